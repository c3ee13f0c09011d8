"""Grouping, layer metadata ledger and import/refresh orchestration."""

from cadgis.pipeline.grouping import SplitGroup, group_key, group_layer_name, sanitize_group_key, split, split_group
from cadgis.pipeline.importer import ImportReport, Importer, LayerResult
from cadgis.pipeline.ledger import LayerLedger, LayerMeta, default_ledger_path

__all__ = [
    "group_key",
    "group_layer_name",
    "sanitize_group_key",
    "split",
    "split_group",
    "SplitGroup",
    "ImportReport",
    "Importer",
    "LayerResult",
    "LayerLedger",
    "LayerMeta",
    "default_ledger_path",
]
