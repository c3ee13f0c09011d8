"""Tests for the symbol library and symbol resolution."""

import pytest

from cadgis.core.exceptions import LabelAttributeError, UnknownSymbolError
from cadgis.render.surface import SymbolDefinition
from cadgis.render.symbols import (
    SymbolBinding,
    SymbolLibrary,
    SymbolResolver,
    label_candidates,
    load_symbol_definitions,
)

SYMBOLS = {
    "MARKER": SymbolDefinition("MARKER"),
    "MANHOLE": SymbolDefinition("MANHOLE", {"REF": ""}),
}

KEYS = ["OBJECTID", "ESRI_OID", "esri_guid", "Ref", "Cover"]


class TestBinding:
    def test_none(self):
        binding = SymbolBinding.none()
        assert not binding.use_symbol
        assert binding.describe() == "markers"

    def test_symbol_needs_name(self):
        with pytest.raises(ValueError):
            SymbolBinding(use_symbol=True)

    def test_label_needs_symbol(self):
        with pytest.raises(ValueError):
            SymbolBinding(use_symbol=False, label_attribute="Ref")


class TestResolver:
    def test_no_symbol_draws_markers(self):
        assert SymbolResolver().resolve(SYMBOLS, KEYS) == SymbolBinding.none()

    def test_unknown_symbol(self):
        with pytest.raises(UnknownSymbolError) as exc:
            SymbolResolver().resolve(SYMBOLS, KEYS, symbol_name="HYDRANT", layer="valves")
        assert str(exc.value) == "[valves] Unknown symbol: 'HYDRANT'"

    def test_symbol_without_slots_ignores_label(self, loguru_capture):
        binding = SymbolResolver().resolve(SYMBOLS, KEYS, symbol_name="MARKER", label_attribute="Ref")
        assert binding == SymbolBinding(use_symbol=True, symbol_name="MARKER")
        assert "no label slots" in loguru_capture.getvalue()

    def test_slots_require_label(self):
        with pytest.raises(LabelAttributeError) as exc:
            SymbolResolver().resolve(SYMBOLS, KEYS, symbol_name="MANHOLE")
        assert "OBJECTID, Ref, Cover" in str(exc.value)

    def test_reserved_attribute_is_not_a_label(self):
        with pytest.raises(LabelAttributeError):
            SymbolResolver().resolve(SYMBOLS, KEYS, symbol_name="MANHOLE", label_attribute="ESRI_OID")

    def test_label_matches_case_insensitively(self):
        binding = SymbolResolver().resolve(SYMBOLS, KEYS, symbol_name="MANHOLE", label_attribute="REF")
        assert binding.label_attribute == "Ref"
        assert binding.describe() == "symbol MANHOLE labelled by Ref"


def test_label_candidates_exclude_reserved_prefixes():
    assert label_candidates(KEYS) == ["OBJECTID", "Ref", "Cover"]
    assert label_candidates(KEYS, reserved_prefixes=("OBJECT",)) == ["ESRI_OID", "esri_guid", "Ref", "Cover"]


class TestLibrary:
    def test_standard_library(self):
        definitions = load_symbol_definitions()
        assert "MARKER" in definitions
        assert definitions["MARKER"].label_slots == []
        assert definitions["SPOT_HEIGHT"].attributes == {"LEVEL": "0.00"}

    def test_custom_library(self, tmp_path):
        path = tmp_path / "symbols.yaml"
        path.write_text("symbols:\n  - name: HYDRANT\n    attributes:\n      NUM: ~\n", encoding="utf-8")
        library = SymbolLibrary(path)
        assert library.definitions["HYDRANT"].attributes == {"NUM": ""}

    def test_import_into_defines_missing_symbols_once(self, surface):
        library = SymbolLibrary()
        added = library.import_into(surface)
        assert added == len(library.definitions)
        assert library.loaded
        assert surface.has_symbol("MANHOLE")
        assert not surface.in_transaction
        assert library.import_into(surface) == 0

    def test_existing_symbols_are_kept(self, surface):
        custom = SymbolDefinition("MARKER", {"NOTE": "x"})
        with surface.transaction():
            surface.define_symbol(custom)
        library = SymbolLibrary()
        added = library.import_into(surface)
        assert added == len(library.definitions) - 1
        assert surface.get_symbol("MARKER") == custom
