"""
cadgis - A library and CLI tool to draw GIS features into CAD-style documents.

This package provides tools for:
- Reading features from ArcGIS Online feature services and PostGIS tables
- Reprojecting coordinates between a small set of supported CRS
- Drawing features as points, polylines and symbol instances into named layers
- Splitting imports into one layer per attribute value
- Recording import provenance so that layers can be refreshed later
"""

__docformat__ = 'numpy'

from cadgis._version import __version__

from cadgis import cli, config, core, pipeline, render, sources, utils


__all__ = [
    "__version__",
    "core",
    "config",
    "cli",
    "pipeline",
    "render",
    "sources",
    "utils",
]

# Metadata
__email__ = "cadgis@example.org"
__license__ = "BSD-3"
