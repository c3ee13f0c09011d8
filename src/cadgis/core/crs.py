# src/cadgis/core/crs.py
"""
CRS registry and coordinate transforms.

Only a small, enumerated set of coordinate systems is supported. Each EPSG
code maps to exactly one WKT definition, parsed once at registration time.
Transforms between two registered systems are built with pyproj and are safe
to share between threads.
"""

import math
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from loguru import logger
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError

from cadgis.core.exceptions import (
    InvalidCrsDefinitionError,
    ProjectionError,
    UnknownCrsError,
)

DEFAULT_EPSG = 27700

WGS84_WKT = (
    'GEOGCS["WGS 84",DATUM["WGS_1984",SPHEROID["WGS 84",6378137,298.257223563,'
    'AUTHORITY["EPSG","7030"]],AUTHORITY["EPSG","6326"]],'
    'PRIMEM["Greenwich",0,AUTHORITY["EPSG","8901"]],'
    'UNIT["degree",0.0174532925199433,AUTHORITY["EPSG","9122"]],'
    'AUTHORITY["EPSG","4326"]]'
)

WEB_MERCATOR_WKT = (
    'PROJCS["WGS 84 / Pseudo-Mercator",GEOGCS["WGS 84",DATUM["WGS_1984",'
    'SPHEROID["WGS 84",6378137,298.257223563,AUTHORITY["EPSG","7030"]],'
    'AUTHORITY["EPSG","6326"]],PRIMEM["Greenwich",0,AUTHORITY["EPSG","8901"]],'
    'UNIT["degree",0.0174532925199433,AUTHORITY["EPSG","9122"]],'
    'AUTHORITY["EPSG","4326"]],PROJECTION["Mercator_1SP"],'
    'PARAMETER["central_meridian",0],PARAMETER["scale_factor",1],'
    'PARAMETER["false_easting",0],PARAMETER["false_northing",0],'
    'UNIT["metre",1,AUTHORITY["EPSG","9001"]],AXIS["Easting",EAST],'
    'AXIS["Northing",NORTH],AUTHORITY["EPSG","3857"]]'
)

BRITISH_NATIONAL_GRID_WKT = (
    'PROJCS["OSGB 1936 / British National Grid",GEOGCS["OSGB 1936",'
    'DATUM["OSGB_1936",SPHEROID["Airy 1830",6377563.396,299.3249646,'
    'AUTHORITY["EPSG","7001"]],TOWGS84[375,-111,431,0,0,0,0],'
    'AUTHORITY["EPSG","6277"]],PRIMEM["Greenwich",0,AUTHORITY["EPSG","8901"]],'
    'UNIT["degree",0.0174532925199433,AUTHORITY["EPSG","9122"]],'
    'AUTHORITY["EPSG","4277"]],PROJECTION["Transverse_Mercator"],'
    'PARAMETER["latitude_of_origin",49],PARAMETER["central_meridian",-2],'
    'PARAMETER["scale_factor",0.9996012717],PARAMETER["false_easting",400000],'
    'PARAMETER["false_northing",-100000],UNIT["metre",1,AUTHORITY["EPSG","9001"]],'
    'AUTHORITY["EPSG","27700"]]'
)

BUILTIN_DEFINITIONS: Dict[int, str] = {
    4326: WGS84_WKT,
    3857: WEB_MERCATOR_WKT,
    27700: BRITISH_NATIONAL_GRID_WKT,
}


@dataclass(frozen=True)
class CrsDefinition:
    """A registered coordinate reference system."""

    epsg: int
    wkt: str
    crs: CRS = field(repr=False, compare=False)

    @property
    def name(self) -> str:
        return self.crs.name

    @property
    def is_geographic(self) -> bool:
        return self.crs.is_geographic


class Transform:
    """Coordinate transform between two registered CRS.

    ``apply`` only touches X/Y. pyproj transformers must not be shared
    between threads, so one is built lazily per thread.
    """

    def __init__(self, source: CrsDefinition, target: CrsDefinition):
        self.source = source
        self.target = target
        self._local = threading.local()

    def __repr__(self):
        return f"<Transform EPSG:{self.source.epsg} -> EPSG:{self.target.epsg}>"

    @property
    def is_identity(self) -> bool:
        return False

    def _transformer(self) -> Transformer:
        transformer = getattr(self._local, "transformer", None)
        if transformer is None:
            try:
                transformer = Transformer.from_crs(
                    self.source.crs, self.target.crs, always_xy=True
                )
            except (CRSError, ProjError) as e:
                raise ProjectionError(
                    f"Cannot build transform EPSG:{self.source.epsg} -> "
                    f"EPSG:{self.target.epsg}: {e}"
                ) from e
            self._local.transformer = transformer
        return transformer

    def apply(self, x: float, y: float) -> Tuple[float, float]:
        """Transform one X/Y pair, raising ProjectionError on failure."""
        try:
            tx, ty = self._transformer().transform(x, y, errcheck=True)
        except ProjError as e:
            raise ProjectionError(
                f"Failed to transform ({x}, {y}) from EPSG:{self.source.epsg} "
                f"to EPSG:{self.target.epsg}: {e}"
            ) from e

        if not (math.isfinite(tx) and math.isfinite(ty)):
            raise ProjectionError(
                f"Transform of ({x}, {y}) from EPSG:{self.source.epsg} "
                f"to EPSG:{self.target.epsg} produced invalid coordinates"
            )
        return tx, ty


class IdentityTransform(Transform):
    """Transform between a CRS and itself: coordinates are returned untouched."""

    @property
    def is_identity(self) -> bool:
        return True

    def apply(self, x: float, y: float) -> Tuple[float, float]:
        return x, y


class CrsRegistry:
    """Maps EPSG codes to CRS definitions and builds transforms between them."""

    def __init__(self, default_epsg: int = DEFAULT_EPSG, seed_builtins: bool = True):
        self.default_epsg = default_epsg
        self._definitions: Dict[int, CrsDefinition] = {}
        self._lock = threading.Lock()
        if seed_builtins:
            for epsg, wkt in BUILTIN_DEFINITIONS.items():
                self.register(epsg, wkt)

    def __contains__(self, epsg: int) -> bool:
        return epsg in self._definitions

    def __iter__(self) -> Iterator[CrsDefinition]:
        return iter(sorted(self._definitions.values(), key=lambda d: d.epsg))

    def __len__(self) -> int:
        return len(self._definitions)

    def register(self, epsg: int, wkt: str) -> CrsDefinition:
        """
        Register (or replace) the definition of an EPSG code.

        Args:
            epsg: EPSG identifier
            wkt: Well-known text definition

        Returns:
            The parsed definition

        Raises:
            InvalidCrsDefinitionError: If the WKT cannot be parsed
        """
        if not wkt or not wkt.strip():
            raise InvalidCrsDefinitionError(f"Empty WKT for EPSG:{epsg}")
        try:
            crs = CRS.from_wkt(wkt)
        except CRSError as e:
            raise InvalidCrsDefinitionError(
                f"Invalid WKT for EPSG:{epsg}: {e}"
            ) from e

        definition = CrsDefinition(epsg=epsg, wkt=wkt, crs=crs)
        with self._lock:
            if epsg in self._definitions:
                logger.debug(f"Replacing CRS definition for EPSG:{epsg}")
            self._definitions[epsg] = definition
        return definition

    def resolve_code(self, epsg: Optional[int]) -> int:
        """Return ``epsg``, or the default code when it is absent or zero."""
        if not epsg:
            logger.warning(
                f"No EPSG code given, falling back to default EPSG:{self.default_epsg}"
            )
            return self.default_epsg
        return int(epsg)

    def resolve(self, epsg: Optional[int]) -> CrsDefinition:
        """Look up a definition; absent or zero codes use the default CRS."""
        code = self.resolve_code(epsg)
        try:
            return self._definitions[code]
        except KeyError:
            raise UnknownCrsError(code) from None

    def transform(self, source_epsg: Optional[int], target_epsg: Optional[int]) -> Transform:
        """Build a transform; equal source and target give an explicit identity."""
        source = self.resolve(source_epsg)
        target = self.resolve(target_epsg)
        if source.epsg == target.epsg:
            return IdentityTransform(source, target)
        return Transform(source, target)

    def codes(self) -> List[int]:
        return sorted(self._definitions)


_default_registry: Optional[CrsRegistry] = None


def get_registry() -> CrsRegistry:
    """Process-wide registry seeded with the built-in definitions."""
    global _default_registry
    if _default_registry is None:
        _default_registry = CrsRegistry()
    return _default_registry
