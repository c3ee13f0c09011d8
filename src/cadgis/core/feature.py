# src/cadgis/core/feature.py
"""
Feature records: an attribute bag plus an optional geometry.

Attribute values are restricted to a small set of scalar types (None, bool,
int, float, str, date, datetime). Source adapters pass raw values through
``normalize_value`` so that everything downstream can rely on those types.
Typed access goes through explicit conversion helpers that raise
``AttributeConversionError`` instead of guessing.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from cadgis.core.exceptions import AttributeConversionError
from cadgis.core.geometry import Geometry

AttributeValue = Union[None, bool, int, float, str, date, datetime]

NULL_TEXT = "NULL"


def normalize_value(value: Any) -> AttributeValue:
    """Coerce a raw source value into one of the supported scalar types."""
    if value is None or isinstance(value, (bool, int, float, str, datetime, date)):
        return value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def format_value(value: AttributeValue) -> str:
    """
    String representation used for labels and group keys.

    Null becomes an empty string, integral floats drop their trailing ``.0``
    and dates use ISO format.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def as_text(value: AttributeValue) -> str:
    return format_value(value)


def as_float(value: AttributeValue) -> float:
    """Convert to float; booleans, dates and non-numeric text are rejected."""
    if isinstance(value, bool) or value is None:
        raise AttributeConversionError(f"Cannot convert {value!r} to float")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise AttributeConversionError(f"Cannot convert {value!r} to float") from None
    raise AttributeConversionError(f"Cannot convert {type(value).__name__} to float")


def as_int(value: AttributeValue) -> int:
    """Convert to int; floats must be integral."""
    number = as_float(value)
    if not number.is_integer():
        raise AttributeConversionError(f"Cannot convert {value!r} to int without loss")
    return int(number)


def as_bool(value: AttributeValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "yes", "y", "1"}:
            return True
        if lowered in {"false", "f", "no", "n", "0"}:
            return False
    raise AttributeConversionError(f"Cannot convert {value!r} to bool")


def as_datetime(value: AttributeValue) -> datetime:
    """Convert to datetime. Integers are read as epoch milliseconds (ESRI dates)."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, int) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            pass
    raise AttributeConversionError(f"Cannot convert {value!r} to datetime")


def find_key(keys: Iterable[str], wanted: str) -> Optional[str]:
    """Exact match first, then a case-insensitive match. None if absent."""
    candidates = list(keys)
    if wanted in candidates:
        return wanted
    lowered = wanted.lower()
    for key in candidates:
        if key.lower() == lowered:
            return key
    return None


@dataclass
class FeatureRecord:
    """One feature flowing through the pipeline."""

    attributes: Dict[str, AttributeValue] = field(default_factory=dict)
    geometry: Optional[Geometry] = None

    @classmethod
    def from_raw(cls, attributes: Mapping[str, Any], geometry: Optional[Geometry] = None) -> "FeatureRecord":
        return cls(
            attributes={str(k): normalize_value(v) for k, v in attributes.items()},
            geometry=geometry,
        )

    @property
    def has_geometry(self) -> bool:
        return self.geometry is not None

    def keys(self) -> List[str]:
        return list(self.attributes)

    def get(self, key: str, default: AttributeValue = None, case_insensitive: bool = False) -> AttributeValue:
        if key in self.attributes:
            return self.attributes[key]
        if case_insensitive:
            actual = find_key(self.attributes, key)
            if actual is not None:
                return self.attributes[actual]
        return default

    def text(self, key: str, case_insensitive: bool = False) -> str:
        """String representation of an attribute; empty when missing or null."""
        return format_value(self.get(key, case_insensitive=case_insensitive))

    def get_float(self, key: str) -> float:
        return as_float(self.get(key))

    def get_int(self, key: str) -> int:
        return as_int(self.get(key))
