"""
Drawing surfaces, symbol resolution and the render engine.

The GeoPackage surface pulls in geopandas and is loaded lazily.
"""
from cadgis.render.engine import RenderEngine, RenderStats
from cadgis.render.surface import (
    DrawingSurface,
    InMemoryDrawingSurface,
    LayerHandle,
    Primitive,
    PrimitiveKind,
    SymbolDefinition,
    TransactionError,
)
from cadgis.render.symbols import (
    SymbolBinding,
    SymbolLibrary,
    SymbolResolver,
    label_candidates,
    load_symbol_definitions,
)

__all__ = [
    "RenderEngine",
    "RenderStats",
    "DrawingSurface",
    "InMemoryDrawingSurface",
    "GeoPackageDrawingSurface",
    "LayerHandle",
    "Primitive",
    "PrimitiveKind",
    "SymbolDefinition",
    "TransactionError",
    "SymbolBinding",
    "SymbolLibrary",
    "SymbolResolver",
    "label_candidates",
    "load_symbol_definitions",
]


def __getattr__(name: str):
    if name == "GeoPackageDrawingSurface":
        from cadgis.render.gpkg_surface import GeoPackageDrawingSurface

        globals()[name] = GeoPackageDrawingSurface
        return GeoPackageDrawingSurface
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
