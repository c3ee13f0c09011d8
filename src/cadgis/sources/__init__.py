"""Feature sources: ArcGIS Online feature services and PostGIS tables."""

from cadgis.sources.arcgis import (
    ArcGISClient,
    ArcGISFeatureSource,
    Folder,
    ServiceInfo,
    ServiceItem,
    SubLayer,
)
from cadgis.sources.base import FeatureBatch, FeatureSource
from cadgis.sources.postgis import (
    OPERATORS,
    ColumnInfo,
    PostGISClient,
    PostGISFeatureSource,
    QueryCondition,
    TableInfo,
    build_query,
    clip_to_extent,
    default_query,
    group_filter_query,
    reproject_extent,
    validate_query,
)

__all__ = [
    "ArcGISClient",
    "ArcGISFeatureSource",
    "Folder",
    "ServiceInfo",
    "ServiceItem",
    "SubLayer",
    "FeatureBatch",
    "FeatureSource",
    "OPERATORS",
    "ColumnInfo",
    "PostGISClient",
    "PostGISFeatureSource",
    "QueryCondition",
    "TableInfo",
    "build_query",
    "clip_to_extent",
    "default_query",
    "group_filter_query",
    "reproject_extent",
    "validate_query",
]
