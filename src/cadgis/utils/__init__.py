"""
Cadgis utilities module.

Lightweight imports only: the GeoPackage helpers pull in geopandas and are
loaded lazily on first access.
"""
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cadgis.utils.gpkg import list_gpkg_layers, read_gpkg_layer, write_gpkg_layer

from cadgis.utils.logging import cadgis_logger, logger, setup_logging

__all__ = [
    # Logging
    "cadgis_logger",
    "logger",
    "setup_logging",
    # GPKG utilities (lazy loaded)
    "list_gpkg_layers",
    "read_gpkg_layer",
    "write_gpkg_layer",
]


def __getattr__(name: str):
    """
    Lazy import mechanism for heavy dependencies.

    This prevents loading geopandas/pandas until actually needed.
    """
    _lazy_imports = {
        "list_gpkg_layers": "cadgis.utils.gpkg",
        "read_gpkg_layer": "cadgis.utils.gpkg",
        "write_gpkg_layer": "cadgis.utils.gpkg",
    }

    if name in _lazy_imports:
        import importlib

        module = importlib.import_module(_lazy_imports[name])
        attr = getattr(module, name)

        globals()[name] = attr
        return attr

    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
