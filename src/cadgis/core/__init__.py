"""Core model: CRS registry, geometry model, feature records and errors."""

from cadgis.core.crs import (
    BUILTIN_DEFINITIONS,
    DEFAULT_EPSG,
    CrsDefinition,
    CrsRegistry,
    IdentityTransform,
    Transform,
    get_registry,
)
from cadgis.core.exceptions import (
    AttributeConversionError,
    CadGisError,
    DrawingWriteError,
    InvalidCrsDefinitionError,
    LabelAttributeError,
    LedgerError,
    ProjectionError,
    QueryError,
    SourceConnectionError,
    UnknownCrsError,
    UnknownSymbolError,
)
from cadgis.core.feature import FeatureRecord, format_value, normalize_value
from cadgis.core.geometry import (
    GEOMETRY_TYPES,
    Coordinate,
    Geometry,
    GeometryKind,
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
    from_esri_json,
    from_shapely,
    from_wkb,
    infer_kind,
)

__all__ = [
    "BUILTIN_DEFINITIONS",
    "DEFAULT_EPSG",
    "CrsDefinition",
    "CrsRegistry",
    "IdentityTransform",
    "Transform",
    "get_registry",
    "AttributeConversionError",
    "CadGisError",
    "DrawingWriteError",
    "InvalidCrsDefinitionError",
    "LabelAttributeError",
    "LedgerError",
    "ProjectionError",
    "QueryError",
    "SourceConnectionError",
    "UnknownCrsError",
    "UnknownSymbolError",
    "FeatureRecord",
    "format_value",
    "normalize_value",
    "GEOMETRY_TYPES",
    "Coordinate",
    "Geometry",
    "GeometryKind",
    "LineString",
    "MultiLineString",
    "MultiPoint",
    "MultiPolygon",
    "Point",
    "Polygon",
    "from_esri_json",
    "from_shapely",
    "from_wkb",
    "infer_kind",
]
