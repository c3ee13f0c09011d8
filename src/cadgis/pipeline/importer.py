# src/cadgis/pipeline/importer.py
"""
Import and refresh orchestration.

Every import follows the same steps: fetch the whole batch, optionally split
it by an attribute, resolve the point symbol binding, render every target
layer in one transaction and record PostGIS provenance in the ledger.
Refresh redraws each recorded layer in its own transaction.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from cadgis.core.crs import CrsRegistry, get_registry
from cadgis.core.exceptions import CadGisError
from cadgis.core.feature import FeatureRecord, find_key
from cadgis.core.geometry import GeometryKind
from cadgis.pipeline.grouping import SplitGroup, group_layer_name, split, split_group
from cadgis.pipeline.ledger import LayerLedger, LayerMeta
from cadgis.render.engine import RenderEngine, RenderStats
from cadgis.render.surface import DrawingSurface
from cadgis.render.symbols import SymbolBinding, SymbolLibrary, SymbolResolver
from cadgis.sources.arcgis import ArcGISFeatureSource, ServiceInfo
from cadgis.sources.base import FeatureBatch
from cadgis.sources.postgis import (
    Extent,
    PostGISFeatureSource,
    TableInfo,
    clip_to_extent,
    default_query,
    group_filter_query,
    reproject_extent,
)

# layer name, split group (None when not split) -> ledger record
MetaFactory = Callable[[str, Optional[SplitGroup]], LayerMeta]


@dataclass
class LayerResult:
    layer: str
    stats: Optional[RenderStats] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ImportReport:
    results: List[LayerResult] = field(default_factory=list)

    @property
    def drawn_count(self) -> int:
        return sum(r.stats.drawn_count for r in self.results if r.stats)

    @property
    def skipped_count(self) -> int:
        return sum(r.stats.skipped_count for r in self.results if r.stats)

    @property
    def failed(self) -> List[LayerResult]:
        return [r for r in self.results if not r.ok]

    @property
    def layers(self) -> List[str]:
        return [r.layer for r in self.results if r.ok]

    def extend(self, other: "ImportReport") -> None:
        self.results.extend(other.results)


class Importer:
    """Drives sources, the render engine and the ledger for one drawing."""

    def __init__(
        self,
        surface: DrawingSurface,
        target_epsg: int = 27700,
        ledger: Optional[LayerLedger] = None,
        symbol_library: Optional[SymbolLibrary] = None,
        resolver: Optional[SymbolResolver] = None,
        registry: Optional[CrsRegistry] = None,
        marker_radius: float = 1.0,
    ):
        self.surface = surface
        self.registry = registry or get_registry()
        self.target_epsg = self.registry.resolve_code(target_epsg)
        self.ledger = ledger
        self.symbol_library = symbol_library or SymbolLibrary()
        self.resolver = resolver or SymbolResolver()
        self.engine = RenderEngine(surface, registry=self.registry, marker_radius=marker_radius)

    # ------------------------------------------------------------------
    # Shared pipeline
    # ------------------------------------------------------------------

    def resolve_binding(
        self,
        batch: FeatureBatch,
        layer_name: str,
        symbol_name: Optional[str] = None,
        label_attribute: Optional[str] = None,
    ) -> SymbolBinding:
        """Symbol binding for a batch; only point layers are symbolised."""
        if not symbol_name:
            return SymbolBinding.none()

        kind = batch.kind
        if kind is not GeometryKind.POINT:
            logger.warning(f"{layer_name} is a {kind.value} layer, symbol {symbol_name} ignored")
            return SymbolBinding.none()

        self.symbol_library.import_into(self.surface)
        return self.resolver.resolve(
            self.surface.symbols(),
            batch.attribute_keys(),
            symbol_name=symbol_name,
            label_attribute=label_attribute,
            layer=layer_name,
        )

    def _targets(
        self, batch: FeatureBatch, layer_name: str, split_by: Optional[str]
    ) -> List[Tuple[str, Optional[SplitGroup], List[FeatureRecord]]]:
        if not split_by:
            return [(layer_name, None, list(batch))]
        groups = split(batch, split_by)
        logger.info(f"{layer_name}: split by {split_by} into {len(groups)} group(s)")
        return [
            (group_layer_name(layer_name, key), split_group(key, features, split_by), features)
            for key, features in groups.items()
        ]

    def import_batch(
        self,
        batch: FeatureBatch,
        layer_name: Optional[str] = None,
        split_by: Optional[str] = None,
        symbol_name: Optional[str] = None,
        label_attribute: Optional[str] = None,
        meta_factory: Optional[MetaFactory] = None,
    ) -> ImportReport:
        """
        Render a fetched batch into one layer, or one layer per split group.

        The symbol binding is resolved once for the whole batch before
        anything is drawn. All target layers share one transaction: a
        failure on any of them leaves the drawing untouched and is raised.
        Ledger records are written only after the commit.
        """
        layer_name = layer_name or batch.layer_name
        report = ImportReport()
        if not batch:
            logger.warning(f"No features to import into {layer_name}")
            return report

        kind = batch.kind
        if kind is GeometryKind.UNKNOWN:
            logger.warning(f"{layer_name}: unknown geometry kind, drawing without symbols")

        binding = self.resolve_binding(batch, layer_name, symbol_name, label_attribute)

        rendered = []
        with self.surface.transaction():
            for target, group, features in self._targets(batch, layer_name, split_by):
                stats = self.engine.render(
                    features, target, batch.source_epsg, self.target_epsg, binding
                )
                rendered.append((target, group, stats))

        for target, group, stats in rendered:
            report.results.append(LayerResult(layer=target, stats=stats))
            logger.info(f"Loaded {stats.drawn_count} {kind.value} primitives into '{target}'")
            if self.ledger is not None and meta_factory is not None:
                self.ledger.upsert(meta_factory(target, group))
        return report

    # ------------------------------------------------------------------
    # PostGIS
    # ------------------------------------------------------------------

    def _meta_factory(
        self, source: PostGISFeatureSource, table: TableInfo, query: Optional[str], split_column: Optional[str]
    ) -> MetaFactory:
        config = source.client.config

        def make(layer: str, group: Optional[SplitGroup]) -> LayerMeta:
            import_sql = query
            if group is not None:
                import_sql = group_filter_query(
                    query or default_query(table.schema, table.table), split_column, group.value
                )
            return LayerMeta(
                layer_name=layer,
                host=config.host,
                database=config.database,
                username=config.username,
                schema_name=table.schema,
                table=table.table,
                geom_column=table.geom_column,
                geom_type=table.geom_type,
                srid=table.srid,
                import_sql=import_sql,
                owning_document=self.surface.document_id,
                last_imported=datetime.now(),
            )

        return make

    def import_table(
        self,
        source: PostGISFeatureSource,
        table: TableInfo,
        layer_name: Optional[str] = None,
        split_by: Optional[str] = None,
        symbol_name: Optional[str] = None,
        label_attribute: Optional[str] = None,
    ) -> ImportReport:
        """Import a whole PostGIS table."""
        batch = source.fetch_table(table, layer_name=layer_name)
        split_column = (find_key(batch.attribute_keys(), split_by) or split_by) if split_by else None
        return self.import_batch(
            batch,
            split_by=split_column,
            symbol_name=symbol_name,
            label_attribute=label_attribute,
            meta_factory=self._meta_factory(source, table, None, split_column),
        )

    def import_query(
        self,
        source: PostGISFeatureSource,
        table: TableInfo,
        query: str,
        layer_name: Optional[str] = None,
        split_by: Optional[str] = None,
        symbol_name: Optional[str] = None,
        label_attribute: Optional[str] = None,
        extent: Optional[Extent] = None,
    ) -> ImportReport:
        """
        Import the result of a SELECT against a PostGIS table.

        Args:
            extent: Optional (xmin, ymin, xmax, ymax) in the drawing CRS;
                geometries are clipped to it
        """
        if extent is not None:
            source_extent = reproject_extent(extent, self.target_epsg, table.srid, self.registry)
            query = clip_to_extent(query, table.geom_column, source_extent, self.registry.resolve_code(table.srid))

        batch = source.fetch(
            query, table.geom_column, table.srid, layer_name or table.table, declared_type=table.geom_type
        )
        split_column = (find_key(batch.attribute_keys(), split_by) or split_by) if split_by else None
        return self.import_batch(
            batch,
            split_by=split_column,
            symbol_name=symbol_name,
            label_attribute=label_attribute,
            meta_factory=self._meta_factory(source, table, query, split_column),
        )

    def refresh(
        self,
        source_for: Callable[[LayerMeta], PostGISFeatureSource],
        layer_names: Optional[Iterable[str]] = None,
    ) -> ImportReport:
        """
        Re-import recorded layers, each in its own clear-and-redraw transaction.

        Args:
            source_for: Builds the source for a ledger record
            layer_names: Layers to refresh (all recorded layers when None)

        Returns:
            One result per layer; failures are reported, not raised
        """
        if self.ledger is None:
            raise CadGisError("Refresh needs a layer ledger")

        records: Dict[str, LayerMeta] = {m.layer_name: m for m in self.ledger.list()}
        wanted = list(layer_names) if layer_names is not None else list(records)

        report = ImportReport()
        for name in wanted:
            meta = records.get(name)
            if meta is None:
                logger.error(f"No import metadata for layer {name}")
                report.results.append(LayerResult(layer=name, error="no import metadata"))
                continue
            try:
                report.results.append(LayerResult(layer=name, stats=self._refresh_layer(source_for(meta), meta)))
            except CadGisError as e:
                logger.error(f"Refresh of {name} failed: {e}")
                report.results.append(LayerResult(layer=name, error=str(e)))
        return report

    def _refresh_layer(self, source: PostGISFeatureSource, meta: LayerMeta) -> RenderStats:
        query = meta.import_sql or default_query(meta.schema_name, meta.table)
        batch = source.fetch(query, meta.geom_column or "geom", meta.srid, meta.layer_name, declared_type=meta.geom_type)
        stats = self.engine.render(
            batch, meta.layer_name, batch.source_epsg, self.target_epsg, replace=True
        )
        self.ledger.upsert(
            meta.model_copy(
                update={"last_imported": datetime.now(), "owning_document": self.surface.document_id}
            )
        )
        logger.info(
            f"Refreshed '{meta.layer_name}': {stats.cleared_count} removed, {stats.drawn_count} drawn"
        )
        return stats

    # ------------------------------------------------------------------
    # ArcGIS
    # ------------------------------------------------------------------

    def import_service(
        self,
        source: ArcGISFeatureSource,
        info: ServiceInfo,
        symbol_name: Optional[str] = None,
        label_attribute: Optional[str] = None,
    ) -> ImportReport:
        """
        Import every non-empty sub-layer of a feature service (no ledger records).

        All sub-layers are fetched before the first one is drawn, so a failing
        fetch leaves the drawing untouched.
        """
        batches = list(source.fetch_service(info))
        report = ImportReport()
        for batch in batches:
            report.extend(
                self.import_batch(batch, symbol_name=symbol_name, label_attribute=label_attribute)
            )
        return report
