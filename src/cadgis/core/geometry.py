# src/cadgis/core/geometry.py
"""
Source-independent geometry model.

A closed set of immutable geometry classes (points, line strings, polygons
and their multi- variants). Source adapters normalise their native encodings
(ESRI JSON, WKB from PostGIS) into these classes; renderers dispatch on them.

Lines and rings always hold at least one coordinate. Normalisation helpers
drop degenerate parts instead of building empty geometries. Rings are not
required to be closed here.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

from loguru import logger
from shapely import geometry as sg
from shapely import wkb as shapely_wkb
from shapely.errors import ShapelyError


class Coordinate(NamedTuple):
    """X/Y with an optional Z."""

    x: float
    y: float
    z: Optional[float] = None


def _as_coordinates(coords: Iterable[Sequence[float]]) -> Tuple[Coordinate, ...]:
    result = []
    for c in coords:
        if isinstance(c, Coordinate):
            result.append(c)
        elif len(c) >= 3 and c[2] is not None:
            result.append(Coordinate(float(c[0]), float(c[1]), float(c[2])))
        else:
            result.append(Coordinate(float(c[0]), float(c[1])))
    return tuple(result)


class GeometryKind(Enum):
    """Layer-level geometry kind, used to decide symbolisation."""

    POINT = "point"
    LINE = "line"
    POLYGON = "polygon"
    UNKNOWN = "unknown"

    @classmethod
    def from_type_name(cls, type_name: Optional[str]) -> "GeometryKind":
        """
        Map a declared type tag to a kind.

        Accepts ESRI tags (``esriGeometryPolyline``), PostGIS/OGC names
        (``MULTIPOLYGON``, ``LineStringZ``) and plain words, case-insensitively.
        """
        if not type_name:
            return cls.UNKNOWN
        name = type_name.lower()
        if "point" in name:
            return cls.POINT
        if "line" in name:
            return cls.LINE
        if "polygon" in name:
            return cls.POLYGON
        return cls.UNKNOWN


@dataclass(frozen=True)
class Point:
    coordinate: Coordinate

    kind = GeometryKind.POINT

    @property
    def x(self) -> float:
        return self.coordinate.x

    @property
    def y(self) -> float:
        return self.coordinate.y

    @property
    def z(self) -> Optional[float]:
        return self.coordinate.z


@dataclass(frozen=True)
class LineString:
    coordinates: Tuple[Coordinate, ...]

    kind = GeometryKind.LINE

    def __post_init__(self):
        if not self.coordinates:
            raise ValueError("LineString requires at least one coordinate")


@dataclass(frozen=True)
class Polygon:
    exterior: Tuple[Coordinate, ...]
    interiors: Tuple[Tuple[Coordinate, ...], ...] = ()

    kind = GeometryKind.POLYGON

    def __post_init__(self):
        if not self.exterior:
            raise ValueError("Polygon exterior ring requires at least one coordinate")


@dataclass(frozen=True)
class MultiPoint:
    points: Tuple[Point, ...]

    kind = GeometryKind.POINT

    def __len__(self):
        return len(self.points)


@dataclass(frozen=True)
class MultiLineString:
    lines: Tuple[LineString, ...]

    kind = GeometryKind.LINE

    def __len__(self):
        return len(self.lines)


@dataclass(frozen=True)
class MultiPolygon:
    polygons: Tuple[Polygon, ...]

    kind = GeometryKind.POLYGON

    def __len__(self):
        return len(self.polygons)


Geometry = Union[Point, LineString, Polygon, MultiPoint, MultiLineString, MultiPolygon]

GEOMETRY_TYPES = (Point, LineString, Polygon, MultiPoint, MultiLineString, MultiPolygon)


# =============================================================================
# Constructors that drop degenerate parts
# =============================================================================


def make_point(x: float, y: float, z: Optional[float] = None) -> Point:
    return Point(Coordinate(float(x), float(y), None if z is None else float(z)))


def make_line(coords: Iterable[Sequence[float]]) -> Optional[LineString]:
    coordinates = _as_coordinates(coords)
    return LineString(coordinates) if coordinates else None


def make_polygon(
    exterior: Iterable[Sequence[float]],
    interiors: Iterable[Iterable[Sequence[float]]] = (),
) -> Optional[Polygon]:
    ring = _as_coordinates(exterior)
    if not ring:
        return None
    holes = tuple(h for h in (_as_coordinates(i) for i in interiors) if h)
    return Polygon(ring, holes)


# =============================================================================
# ESRI JSON
# =============================================================================


def _signed_area(ring: Sequence[Coordinate]) -> float:
    area = 0.0
    for (x1, y1, _), (x2, y2, _) in zip(ring, list(ring[1:]) + [ring[0]]):
        area += x1 * y2 - x2 * y1
    return area / 2.0


def _esri_coordinate(values: Sequence[Any]) -> Coordinate:
    z = values[2] if len(values) > 2 else None
    return Coordinate(float(values[0]), float(values[1]), None if z is None else float(z))


def from_esri_json(geometry: Optional[Dict[str, Any]]) -> Optional[Geometry]:
    """
    Normalise an ESRI JSON geometry.

    - ``{x, y[, z]}`` -> Point (``NaN`` / null x means an empty point)
    - ``{points}`` -> MultiPoint
    - ``{paths}`` -> LineString (one path) or MultiLineString
    - ``{rings}`` -> Polygon or MultiPolygon. Clockwise rings start a new
      polygon, counter-clockwise rings are holes of the preceding polygon.

    Returns None for missing, empty or unrecognised geometries.
    """
    if not geometry:
        return None

    if "x" in geometry and "y" in geometry:
        try:
            x, y = float(geometry["x"]), float(geometry["y"])
        except (TypeError, ValueError):
            return None
        if math.isnan(x) or math.isnan(y):
            return None
        return make_point(x, y, geometry.get("z"))

    if "points" in geometry:
        points = tuple(
            Point(_esri_coordinate(p)) for p in geometry.get("points") or [] if len(p) >= 2
        )
        return MultiPoint(points)

    if "paths" in geometry:
        lines = [
            LineString(tuple(_esri_coordinate(c) for c in path))
            for path in geometry.get("paths") or []
            if path
        ]
        if len(lines) == 1:
            return lines[0]
        return MultiLineString(tuple(lines))

    if "rings" in geometry:
        polygons: List[List[Tuple[Coordinate, ...]]] = []
        for ring in geometry.get("rings") or []:
            if not ring:
                continue
            coords = tuple(_esri_coordinate(c) for c in ring)
            # ESRI outer rings are clockwise (negative signed area)
            if not polygons or _signed_area(coords) <= 0:
                polygons.append([coords])
            else:
                polygons[-1].append(coords)
        built = tuple(Polygon(rings[0], tuple(rings[1:])) for rings in polygons)
        if len(built) == 1:
            return built[0]
        return MultiPolygon(built)

    logger.debug(f"Unrecognised ESRI geometry keys: {sorted(geometry)}")
    return None


# =============================================================================
# Shapely / WKB
# =============================================================================


def _shapely_coords(coords) -> Tuple[Coordinate, ...]:
    return _as_coordinates(tuple(c) for c in coords)


def from_shapely(geom) -> Optional[Geometry]:
    """Normalise a shapely geometry; collections and empty geometries give None."""
    if geom is None or geom.is_empty:
        return None

    if isinstance(geom, sg.Point):
        return Point(_shapely_coords(geom.coords)[0])
    if isinstance(geom, (sg.LineString, sg.LinearRing)):
        return make_line(_shapely_coords(geom.coords))
    if isinstance(geom, sg.Polygon):
        return make_polygon(
            _shapely_coords(geom.exterior.coords),
            [_shapely_coords(i.coords) for i in geom.interiors],
        )
    if isinstance(geom, sg.MultiPoint):
        return MultiPoint(tuple(from_shapely(p) for p in geom.geoms if not p.is_empty))
    if isinstance(geom, sg.MultiLineString):
        return MultiLineString(
            tuple(l for l in (from_shapely(g) for g in geom.geoms) if l is not None)
        )
    if isinstance(geom, sg.MultiPolygon):
        return MultiPolygon(
            tuple(p for p in (from_shapely(g) for g in geom.geoms) if p is not None)
        )

    logger.debug(f"Unsupported geometry type: {geom.geom_type}")
    return None


def from_wkb(value: Union[str, bytes, bytearray, memoryview, None]) -> Optional[Geometry]:
    """
    Decode WKB/EWKB as returned by PostGIS (hex text or raw bytes).

    Raises:
        ValueError: If the value is not valid WKB
    """
    if value is None:
        return None
    try:
        if isinstance(value, str):
            geom = shapely_wkb.loads(value, hex=True)
        else:
            geom = shapely_wkb.loads(bytes(value))
    except (ShapelyError, ValueError, TypeError) as e:
        raise ValueError(f"Invalid WKB geometry: {e}") from e
    return from_shapely(geom)


def to_shapely(geometry: Geometry):
    """Convert back to shapely (used for file-backed drawing surfaces and tests)."""
    if isinstance(geometry, Point):
        return sg.Point(_coord_tuple(geometry.coordinate))
    if isinstance(geometry, LineString):
        return sg.LineString([_coord_tuple(c) for c in geometry.coordinates])
    if isinstance(geometry, Polygon):
        return sg.Polygon(
            [_coord_tuple(c) for c in geometry.exterior],
            [[_coord_tuple(c) for c in ring] for ring in geometry.interiors],
        )
    if isinstance(geometry, MultiPoint):
        return sg.MultiPoint([to_shapely(p) for p in geometry.points])
    if isinstance(geometry, MultiLineString):
        return sg.MultiLineString([to_shapely(l) for l in geometry.lines])
    if isinstance(geometry, MultiPolygon):
        return sg.MultiPolygon([to_shapely(p) for p in geometry.polygons])
    raise TypeError(f"Not a geometry: {type(geometry).__name__}")


def _coord_tuple(c: Coordinate) -> Tuple[float, ...]:
    return (c.x, c.y) if c.z is None else (c.x, c.y, c.z)


# =============================================================================
# Kind inference
# =============================================================================


def infer_kind(
    declared_type: Optional[str], geometries: Iterable[Optional[Geometry]] = ()
) -> GeometryKind:
    """
    Decide the geometry kind of a whole layer.

    The declared type tag wins when it names a kind. Otherwise the first
    non-empty geometry decides.
    """
    kind = GeometryKind.from_type_name(declared_type)
    if kind is not GeometryKind.UNKNOWN:
        return kind

    for geometry in geometries:
        if geometry is not None:
            return geometry.kind
    return GeometryKind.UNKNOWN
