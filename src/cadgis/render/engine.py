# src/cadgis/render/engine.py
"""
Reprojection and render engine.

Features are drawn into one layer of a drawing surface inside a single
transaction: either every primitive of the batch becomes visible or none does.
When the caller already holds a transaction the batch joins it.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from loguru import logger

from cadgis.core.crs import CrsRegistry, Transform, get_registry
from cadgis.core.exceptions import ProjectionError, UnknownCrsError, UnknownSymbolError
from cadgis.core.feature import FeatureRecord
from cadgis.core.geometry import (
    Coordinate,
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)
from cadgis.render.surface import DrawingSurface, LayerHandle, SymbolDefinition, Vertex
from cadgis.render.symbols import SymbolBinding


@dataclass
class RenderStats:
    layer: str
    drawn_count: int = 0
    skipped_count: int = 0
    cleared_count: int = 0

    def __str__(self):
        return f"{self.layer}: {self.drawn_count} drawn, {self.skipped_count} skipped"


@dataclass
class _Batch:
    """Per-render state handed to the geometry handlers."""

    surface: DrawingSurface
    layer_name: str
    transform: Transform
    binding: SymbolBinding
    definition: Optional[SymbolDefinition]
    marker_radius: float
    handle: Optional[LayerHandle] = None

    def layer(self) -> LayerHandle:
        # Created on the first drawable feature
        if self.handle is None:
            self.handle = self.surface.ensure_layer(self.layer_name)
        return self.handle

    def vertex(self, coordinate: Coordinate) -> Vertex:
        x, y = self.transform.apply(coordinate.x, coordinate.y)
        return x, y, 0.0 if coordinate.z is None else coordinate.z


def _draw_point(batch: _Batch, point: Point, feature: FeatureRecord) -> int:
    vertex = batch.vertex(point.coordinate)
    if not batch.binding.use_symbol:
        batch.surface.emit_point(batch.layer(), vertex, radius=batch.marker_radius)
        return 1

    if batch.binding.label_attribute:
        text = feature.text(batch.binding.label_attribute, case_insensitive=True)
        attributes = {tag: text for tag in batch.definition.attributes}
    else:
        attributes = dict(batch.definition.attributes)
    batch.surface.emit_symbol_instance(batch.layer(), batch.definition.name, vertex, attributes)
    return 1


def _draw_line(batch: _Batch, line: LineString, feature: FeatureRecord) -> int:
    vertices = [batch.vertex(c) for c in line.coordinates]
    batch.surface.emit_polyline(batch.layer(), vertices, closed=False)
    return 1


def _draw_polygon(batch: _Batch, polygon: Polygon, feature: FeatureRecord) -> int:
    ring = polygon.exterior
    vertices = [batch.vertex(c) for c in ring]
    # Close explicitly; an already closed ring keeps its vertex count
    if len(ring) < 2 or (ring[0].x, ring[0].y) != (ring[-1].x, ring[-1].y):
        vertices.append(vertices[0])
    else:
        vertices[-1] = vertices[0]
    batch.surface.emit_polyline(batch.layer(), vertices, closed=True)
    return 1


def _draw_multipoint(batch: _Batch, geometry: MultiPoint, feature: FeatureRecord) -> int:
    return sum(_draw_point(batch, p, feature) for p in geometry.points)


def _draw_multiline(batch: _Batch, geometry: MultiLineString, feature: FeatureRecord) -> int:
    return sum(_draw_line(batch, l, feature) for l in geometry.lines)


def _draw_multipolygon(batch: _Batch, geometry: MultiPolygon, feature: FeatureRecord) -> int:
    return sum(_draw_polygon(batch, p, feature) for p in geometry.polygons)


HANDLERS: Dict[type, Callable[[_Batch, object, FeatureRecord], int]] = {
    Point: _draw_point,
    LineString: _draw_line,
    Polygon: _draw_polygon,
    MultiPoint: _draw_multipoint,
    MultiLineString: _draw_multiline,
    MultiPolygon: _draw_multipolygon,
}


class RenderEngine:
    """Draws feature batches into a drawing surface."""

    def __init__(
        self,
        surface: DrawingSurface,
        registry: Optional[CrsRegistry] = None,
        marker_radius: float = 1.0,
    ):
        self.surface = surface
        self.registry = registry or get_registry()
        self.marker_radius = marker_radius

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        # Inside a caller's transaction the caller commits or rolls back
        if self.surface.in_transaction:
            yield
            return
        with self.surface.transaction():
            yield

    def render(
        self,
        features: Iterable[FeatureRecord],
        target_layer: str,
        source_epsg: Optional[int],
        target_epsg: Optional[int],
        binding: Optional[SymbolBinding] = None,
        replace: bool = False,
    ) -> RenderStats:
        """
        Transform and draw a batch of features into ``target_layer``.

        Args:
            features: Fully fetched features
            target_layer: Drawing layer name
            source_epsg: CRS of the feature coordinates (0/None = default)
            target_epsg: CRS of the drawing (0/None = default)
            binding: Point symbolisation, plain markers when None
            replace: Clear the layer in the same transaction before drawing

        Returns:
            RenderStats with drawn and skipped counts

        Raises:
            UnknownCrsError: Before any mutation
            UnknownSymbolError: Before any mutation
            ProjectionError: The transaction is rolled back
        """
        binding = binding or SymbolBinding.none()
        features: List[FeatureRecord] = list(features)

        try:
            transform = self.registry.transform(source_epsg, target_epsg)
        except UnknownCrsError as e:
            raise UnknownCrsError(e.epsg, layer=target_layer) from None

        definition = None
        if binding.use_symbol:
            definition = self.surface.get_symbol(binding.symbol_name)
            if definition is None:
                raise UnknownSymbolError(binding.symbol_name, layer=target_layer)

        stats = RenderStats(layer=target_layer)
        batch = _Batch(
            surface=self.surface,
            layer_name=target_layer,
            transform=transform,
            binding=binding,
            definition=definition,
            marker_radius=self.marker_radius,
        )

        logger.debug(
            f"Rendering {len(features)} features into {target_layer} "
            f"(EPSG:{transform.source.epsg} -> EPSG:{transform.target.epsg}, {binding.describe()})"
        )

        try:
            with self._unit_of_work():
                if replace:
                    stats.cleared_count = self.surface.clear_layer(batch.layer())

                for feature in features:
                    geometry = feature.geometry
                    if geometry is None:
                        stats.skipped_count += 1
                        continue
                    handler = HANDLERS.get(type(geometry))
                    if handler is None:
                        logger.debug(f"Unsupported geometry {type(geometry).__name__} skipped")
                        stats.skipped_count += 1
                        continue
                    stats.drawn_count += handler(batch, geometry, feature)
        except ProjectionError as e:
            raise ProjectionError(str(e), layer=target_layer) from e

        if stats.skipped_count:
            logger.info(f"{target_layer}: skipped {stats.skipped_count} feature(s) without drawable geometry")
        logger.debug(str(stats))
        return stats
