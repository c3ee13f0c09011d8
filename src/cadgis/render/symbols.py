# src/cadgis/render/symbols.py
"""
Symbol library and symbol resolution for point layers.

A point layer can be drawn with a reusable symbol (block) instead of bare
markers. When the chosen symbol has labelable slots, one feature attribute
provides their text.
"""

from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import yaml
from loguru import logger

from cadgis.core.exceptions import LabelAttributeError, UnknownSymbolError
from cadgis.core.feature import find_key
from cadgis.render.surface import DrawingSurface, SymbolDefinition

DEFAULT_RESERVED_PREFIXES = ("ESRI",)


@dataclass(frozen=True)
class SymbolBinding:
    """How the points of one batch are drawn."""

    use_symbol: bool = False
    symbol_name: Optional[str] = None
    label_attribute: Optional[str] = None

    def __post_init__(self):
        if self.use_symbol and not self.symbol_name:
            raise ValueError("A symbol binding needs a symbol name")
        if not self.use_symbol and (self.symbol_name or self.label_attribute):
            raise ValueError("Symbol name and label need use_symbol=True")

    @classmethod
    def none(cls) -> "SymbolBinding":
        return cls(use_symbol=False)

    def describe(self) -> str:
        if not self.use_symbol:
            return "markers"
        if self.label_attribute:
            return f"symbol {self.symbol_name} labelled by {self.label_attribute}"
        return f"symbol {self.symbol_name}"


def load_symbol_definitions(source: Union[str, Path, None] = None) -> Dict[str, SymbolDefinition]:
    """
    Read symbol definitions from YAML.

    Args:
        source: Path to a YAML library, or None for the bundled standard library

    Returns:
        Definitions by name, in file order
    """
    if source is None:
        text = resources.files("cadgis.resources").joinpath("standard_symbols.yaml").read_text(encoding="utf-8")
    else:
        text = Path(source).read_text(encoding="utf-8")

    data = yaml.safe_load(text) or {}
    definitions = {}
    for entry in data.get("symbols", []):
        attributes = {str(k): "" if v is None else str(v) for k, v in (entry.get("attributes") or {}).items()}
        definitions[entry["name"]] = SymbolDefinition(name=entry["name"], attributes=attributes)
    return definitions


class SymbolLibrary:
    """
    Standard symbol definitions, imported into a drawing at most once.

    ``loaded`` is explicit process state: callers share one library object
    and pass it to whoever may need the symbols.
    """

    def __init__(self, path: Union[str, Path, None] = None, loaded: bool = False):
        self.path = Path(path) if path else None
        self.loaded = loaded
        self._definitions: Optional[Dict[str, SymbolDefinition]] = None

    @property
    def definitions(self) -> Dict[str, SymbolDefinition]:
        if self._definitions is None:
            self._definitions = load_symbol_definitions(self.path)
            logger.debug(
                f"Loaded {len(self._definitions)} symbol definitions from "
                f"{self.path or 'standard library'}"
            )
        return self._definitions

    def import_into(self, surface: DrawingSurface) -> int:
        """Copy missing definitions into the drawing. Returns the number added."""
        if self.loaded:
            return 0

        missing = [d for name, d in self.definitions.items() if not surface.has_symbol(name)]
        if missing:
            with surface.transaction():
                for definition in missing:
                    surface.define_symbol(definition)
            logger.info(f"Imported {len(missing)} standard symbols")
        self.loaded = True
        return len(missing)


def label_candidates(
    attribute_keys: Iterable[str], reserved_prefixes: Sequence[str] = DEFAULT_RESERVED_PREFIXES
) -> List[str]:
    """Attribute keys that may feed a label (platform-reserved keys excluded)."""
    prefixes = tuple(p.upper() for p in reserved_prefixes)
    return [k for k in attribute_keys if not k.upper().startswith(prefixes)]


class SymbolResolver:
    """Turns an operator's symbol/label choice into a validated SymbolBinding."""

    def __init__(self, reserved_prefixes: Sequence[str] = DEFAULT_RESERVED_PREFIXES):
        self.reserved_prefixes = tuple(reserved_prefixes)

    def resolve(
        self,
        candidate_symbols: Mapping[str, SymbolDefinition],
        attribute_keys: Iterable[str],
        symbol_name: Optional[str] = None,
        label_attribute: Optional[str] = None,
        layer: Optional[str] = None,
    ) -> SymbolBinding:
        """
        Resolve the binding for one point layer or group.

        Args:
            candidate_symbols: Symbols available in the drawing
            attribute_keys: Attribute keys of the layer's features
            symbol_name: Chosen symbol, or None to draw plain markers
            label_attribute: Attribute supplying the label text
            layer: Layer name for error messages

        Raises:
            UnknownSymbolError: The symbol is not among the candidates
            LabelAttributeError: The symbol has label slots and the label
                attribute is missing or not a valid candidate
        """
        if not symbol_name:
            return SymbolBinding.none()

        definition = candidate_symbols.get(symbol_name)
        if definition is None:
            raise UnknownSymbolError(symbol_name, layer=layer)

        if not definition.label_slots:
            if label_attribute:
                logger.warning(f"Symbol {symbol_name} has no label slots, ignoring '{label_attribute}'")
            return SymbolBinding(use_symbol=True, symbol_name=symbol_name)

        candidates = label_candidates(attribute_keys, self.reserved_prefixes)
        if not label_attribute:
            raise LabelAttributeError(
                f"Symbol {symbol_name} has label slots {definition.label_slots}; "
                f"choose one of: {', '.join(candidates) or '(no attributes)'}",
                layer=layer,
            )

        actual = find_key(candidates, label_attribute)
        if actual is None:
            raise LabelAttributeError(
                f"'{label_attribute}' is not a label candidate; "
                f"choose one of: {', '.join(candidates) or '(no attributes)'}",
                layer=layer,
            )
        return SymbolBinding(use_symbol=True, symbol_name=symbol_name, label_attribute=actual)
