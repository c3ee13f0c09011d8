# src/cadgis/core/exceptions.py
"""
Domain exceptions shared by sources, renderers and the import pipeline
"""
from typing import Optional


class CadGisError(Exception):
    """Base exception for cadgis errors.

    Errors raised while working on a specific drawing layer carry its name so
    that operator-facing messages can say which layer failed.
    """

    def __init__(self, message: str, layer: Optional[str] = None):
        self.layer = layer
        if layer:
            message = f"[{layer}] {message}"
        super().__init__(message)


class SourceConnectionError(CadGisError):
    """Raised when a feature source (portal, database) cannot be reached."""

    pass


class QueryError(CadGisError):
    """Raised when a query is malformed or rejected by the source."""

    pass


class UnknownCrsError(CadGisError):
    """Raised when an EPSG code is not registered."""

    def __init__(self, epsg: int, layer: Optional[str] = None):
        self.epsg = epsg
        super().__init__(f"Unknown CRS: EPSG:{epsg}", layer=layer)


class InvalidCrsDefinitionError(CadGisError):
    """Raised when a WKT definition cannot be parsed."""

    pass


class ProjectionError(CadGisError):
    """Raised when a coordinate transform cannot be built or applied."""

    pass


class UnknownSymbolError(CadGisError):
    """Raised when a requested symbol does not exist."""

    def __init__(self, symbol_name: str, layer: Optional[str] = None):
        self.symbol_name = symbol_name
        super().__init__(f"Unknown symbol: '{symbol_name}'", layer=layer)


class LabelAttributeError(CadGisError):
    """Raised when a label attribute is missing or not a valid candidate."""

    pass


class AttributeConversionError(CadGisError, ValueError):
    """Raised when an attribute value cannot be converted to the requested type."""

    pass


class LedgerError(CadGisError):
    """Raised when the layer metadata file cannot be read or written."""

    pass


class DrawingWriteError(CadGisError):
    """Raised when a committed transaction cannot be saved to the drawing document."""

    pass
