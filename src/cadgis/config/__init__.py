# src/cadgis/config/__init__.py
"""
Unified configuration system using Pydantic
"""

import os
from functools import lru_cache
from pathlib import Path

from cadgis.config.loader import debug_config_loading, get_config, load_config
from cadgis.config.models import (
    AppConfig,
    ArcGISConfig,
    DrawingConfig,
    GlobalConfig,
    LedgerConfig,
    PostGISConfig,
    SymbolsConfig,
)


# Paths
@lru_cache(maxsize=1)
def get_config_dir() -> Path:
    """
    Get cadgis config directory.

    Resolution order:
    1. CADGIS_CONFIG_DIR environment variable
    2. XDG_CONFIG_HOME/cadgis (Linux standard)
    3. ~/.cadgis (if home exists)
    4. /tmp/cadgis (container fallback)
    """
    if env_dir := os.environ.get("CADGIS_CONFIG_DIR"):
        config_dir = Path(env_dir)
    elif xdg_config := os.environ.get("XDG_CONFIG_HOME"):
        config_dir = Path(xdg_config) / "cadgis"
    else:
        try:
            home = Path.home()
            if home.exists() and os.access(home, os.W_OK):
                config_dir = home / ".cadgis"
            else:
                raise OSError("Home not writable")
        except (OSError, RuntimeError):
            # RuntimeError: Could not determine home directory
            config_dir = Path("/tmp/cadgis")

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


# Short environment names accepted on the command line
ENVIRONMENT_ALIASES = {
    "dev": "development",
    "development": "development",
    "prod": "production",
    "production": "production",
    "test": "test",
}

DEFAULT_TARGET_EPSG = 27700

DEFAULT_SOURCE_EPSG = 3857

LEDGER_FILENAME = "pg_layer_metadata.json"

# Attribute prefixes owned by the ArcGIS platform, never offered as labels
RESERVED_ATTRIBUTE_PREFIXES = ("ESRI",)


def resolve_environment(name: str) -> str:
    return ENVIRONMENT_ALIASES.get(name.lower(), name.lower())


__all__ = [
    "AppConfig",
    "ArcGISConfig",
    "DrawingConfig",
    "GlobalConfig",
    "LedgerConfig",
    "PostGISConfig",
    "SymbolsConfig",
    "load_config",
    "get_config",
    "get_config_dir",
    "debug_config_loading",
    "resolve_environment",
    "ENVIRONMENT_ALIASES",
    "DEFAULT_TARGET_EPSG",
    "DEFAULT_SOURCE_EPSG",
    "LEDGER_FILENAME",
    "RESERVED_ATTRIBUTE_PREFIXES",
]
