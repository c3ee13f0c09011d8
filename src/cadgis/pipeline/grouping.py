# src/cadgis/pipeline/grouping.py
"""
Split a batch of features into groups by the value of one attribute.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List

from cadgis.core.feature import NULL_TEXT, AttributeValue, FeatureRecord, format_value

# Characters that are not allowed in file names or drawing layer names
_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s")


@dataclass(frozen=True)
class SplitGroup:
    """One group of a split: its text key and the attribute value it came from."""

    key: str
    value: AttributeValue


def group_key(feature: FeatureRecord, attribute_key: str) -> str:
    """String form of the attribute value, ``"NULL"`` when missing or null."""
    value = feature.get(attribute_key, case_insensitive=True)
    if value is None:
        return NULL_TEXT
    return format_value(value)


def split(features: Iterable[FeatureRecord], attribute_key: str) -> Dict[str, List[FeatureRecord]]:
    """
    Partition features by attribute value.

    Groups come out in first-seen order of their key. Features keep their
    relative order inside a group.
    """
    groups: Dict[str, List[FeatureRecord]] = {}
    for feature in features:
        groups.setdefault(group_key(feature, attribute_key), []).append(feature)
    return groups


def split_group(key: str, features: List[FeatureRecord], attribute_key: str) -> SplitGroup:
    # Every member formats to the same key, the first one supplies the value
    return SplitGroup(key, features[0].get(attribute_key, case_insensitive=True))


def sanitize_group_key(key: str) -> str:
    """Make a group key safe for file and layer names."""
    key = _INVALID_CHARS.sub("_", key)
    return _WHITESPACE.sub("_", key)


def group_layer_name(base_name: str, key: str) -> str:
    return f"{base_name}-{sanitize_group_key(key)}"
