# src/cadgis/render/gpkg_surface.py
"""
GeoPackage-backed drawing surface.

The document is a GeoPackage file, each drawing layer one GeoPackage layer.
Commit rewrites only the layers touched by the transaction, in a copy of the
file that replaces the document once every layer has been written.
"""

import json
import math
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

import geopandas as gpd
import pandas as pd
from loguru import logger
from shapely.geometry import LineString as ShapelyLineString
from shapely.geometry import Point as ShapelyPoint

from cadgis.core.exceptions import DrawingWriteError
from cadgis.render.surface import InMemoryDrawingSurface, Primitive, PrimitiveKind
from cadgis.utils.gpkg import list_gpkg_layers, read_gpkg_layer, write_gpkg_layer

COLUMNS = ["kind", "closed", "symbol", "radius", "attributes"]


def primitives_to_frame(primitives: List[Primitive], crs: Optional[str]) -> gpd.GeoDataFrame:
    """Convert primitives into a GeoDataFrame with one row per primitive."""
    rows = []
    geometries = []
    for primitive in primitives:
        if primitive.kind == PrimitiveKind.POLYLINE:
            vertices = list(primitive.vertices)
            if len(vertices) == 1:
                # LineString needs two vertices
                vertices = vertices * 2
            geometries.append(ShapelyLineString(vertices))
        else:
            geometries.append(ShapelyPoint(primitive.location))
        rows.append(
            {
                "kind": primitive.kind.value,
                "closed": bool(primitive.closed),
                "symbol": primitive.symbol or "",
                "radius": primitive.radius if primitive.radius is not None else 0.0,
                "attributes": json.dumps(dict(primitive.attributes)),
            }
        )
    return gpd.GeoDataFrame(pd.DataFrame(rows, columns=COLUMNS), geometry=geometries, crs=crs)


def frame_to_primitives(gdf: gpd.GeoDataFrame) -> List[Primitive]:
    primitives = []
    for row in gdf.itertuples(index=False):
        geom = row.geometry
        if geom is None or geom.is_empty:
            continue
        vertices = tuple(
            (c[0], c[1], c[2] if len(c) > 2 else 0.0) for c in geom.coords
        )
        kind = PrimitiveKind(row.kind)
        radius = row.radius
        primitives.append(
            Primitive(
                kind=kind,
                vertices=vertices,
                closed=bool(row.closed),
                symbol=row.symbol or None,
                attributes=json.loads(row.attributes) if row.attributes else {},
                radius=radius if kind == PrimitiveKind.POINT and not math.isnan(radius) else None,
            )
        )
    return primitives


class GeoPackageDrawingSurface(InMemoryDrawingSurface):
    """Drawing surface persisted to a GeoPackage file."""

    def __init__(self, path: Union[str, Path], crs: Optional[str] = "EPSG:27700"):
        self.path = Path(path).absolute()
        self.crs = crs
        super().__init__(document_id=str(self.path))
        self._load()

    def _load(self) -> None:
        for layer in list_gpkg_layers(self.path):
            self._layers[layer] = frame_to_primitives(read_gpkg_layer(self.path, layer))
            logger.debug(f"Loaded layer {layer} ({len(self._layers[layer])} primitives)")

    def _persist(self, layers: Dict[str, List[Primitive]], touched: Set[str]) -> None:
        if not touched:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Same directory as the document so that os.replace stays on one file system
        work_dir = Path(tempfile.mkdtemp(prefix=".cadgis_", dir=self.path.parent))
        work_path = work_dir / self.path.name
        try:
            if self.path.exists():
                shutil.copy2(self.path, work_path)
            for name in sorted(touched):
                write_gpkg_layer(primitives_to_frame(layers.get(name, []), self.crs), work_path, name)
            if work_path.exists():
                os.replace(work_path, self.path)
        except Exception as e:
            raise DrawingWriteError(f"Cannot save {self.path}: {e}") from e
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
        logger.debug(f"Saved {len(touched)} layer(s) to {self.path}")
