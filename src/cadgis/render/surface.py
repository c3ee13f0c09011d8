# src/cadgis/render/surface.py
"""
Drawing surface contract.

The host document is reduced to a narrow sink: named layers holding drawing
primitives (point markers, polylines, symbol instances) and a table of symbol
definitions. Every mutation happens inside a transaction that is committed or
rolled back as a whole.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from loguru import logger

Vertex = Tuple[float, float, float]


class PrimitiveKind(str, Enum):
    POINT = "point"
    POLYLINE = "polyline"
    SYMBOL = "symbol"


@dataclass(frozen=True)
class Primitive:
    """One drawn entity."""

    kind: PrimitiveKind
    vertices: Tuple[Vertex, ...]
    closed: bool = False
    symbol: Optional[str] = None
    attributes: Mapping[str, str] = field(default_factory=dict)
    radius: Optional[float] = None

    @property
    def location(self) -> Vertex:
        return self.vertices[0]


@dataclass(frozen=True)
class LayerHandle:
    name: str


@dataclass(frozen=True)
class SymbolDefinition:
    """A reusable block: a name plus labelable attribute tags with default text."""

    name: str
    attributes: Mapping[str, str] = field(default_factory=dict)

    @property
    def label_slots(self) -> List[str]:
        return list(self.attributes)


class TransactionError(RuntimeError):
    """Raised when the surface is used outside (or inside a nested) transaction."""


class DrawingSurface(ABC):
    """Abstract sink for rendered primitives."""

    @property
    @abstractmethod
    def document_id(self) -> Optional[str]:
        """Identifier of the owning document, recorded in the layer ledger."""

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def ensure_layer(self, name: str) -> LayerHandle:
        """Return the layer, creating it when missing."""

    @abstractmethod
    def clear_layer(self, handle: LayerHandle) -> int:
        """Remove every primitive of a layer, returning how many were removed."""

    @abstractmethod
    def emit_point(self, handle: LayerHandle, vertex: Vertex, radius: float = 1.0) -> None:
        pass

    @abstractmethod
    def emit_polyline(self, handle: LayerHandle, vertices: Sequence[Vertex], closed: bool = False) -> None:
        pass

    @abstractmethod
    def emit_symbol_instance(
        self, handle: LayerHandle, symbol: str, vertex: Vertex, attributes: Mapping[str, str]
    ) -> None:
        pass

    @abstractmethod
    def define_symbol(self, definition: SymbolDefinition) -> None:
        pass

    @abstractmethod
    def get_symbol(self, name: str) -> Optional[SymbolDefinition]:
        pass

    @abstractmethod
    def symbols(self) -> Dict[str, SymbolDefinition]:
        pass

    @abstractmethod
    def layer_names(self) -> List[str]:
        pass

    @abstractmethod
    def primitives(self, name: str) -> List[Primitive]:
        """Committed primitives of a layer (empty when the layer does not exist)."""

    def has_symbol(self, name: str) -> bool:
        return self.get_symbol(name) is not None

    @contextmanager
    def transaction(self) -> Iterator["DrawingSurface"]:
        """
        Context manager for one all-or-nothing unit of work

        Commits on normal exit and rolls back on anything else, interrupts
        included, so the surface never stays in an open transaction.
        """
        self.begin_transaction()
        try:
            yield self
            self.commit()
        except BaseException as e:
            logger.debug(f"Rolling back drawing transaction: {e!r}")
            if self.in_transaction:
                self.rollback()
            raise


class InMemoryDrawingSurface(DrawingSurface):
    """
    Drawing surface kept in memory.

    A transaction works on a staged copy of the layers and symbol table;
    nothing is visible through ``layer_names``/``primitives`` until commit.
    """

    def __init__(self, document_id: Optional[str] = "memory"):
        self._document_id = document_id
        self._layers: Dict[str, List[Primitive]] = {}
        self._symbols: Dict[str, SymbolDefinition] = {}
        self._staged_layers: Optional[Dict[str, List[Primitive]]] = None
        self._staged_symbols: Optional[Dict[str, SymbolDefinition]] = None
        self._touched: Set[str] = set()
        self._lock = threading.RLock()

    def __repr__(self):
        return f"<{type(self).__name__} {self._document_id} layers={len(self._layers)}>"

    @property
    def document_id(self) -> Optional[str]:
        return self._document_id

    @property
    def in_transaction(self) -> bool:
        return self._staged_layers is not None

    def begin_transaction(self) -> None:
        with self._lock:
            if self.in_transaction:
                raise TransactionError("A transaction is already open")
            self._staged_layers = {name: list(items) for name, items in self._layers.items()}
            self._staged_symbols = dict(self._symbols)
            self._touched = set()

    def commit(self) -> None:
        with self._lock:
            self._require_transaction()
            self._persist(self._staged_layers, self._touched)
            self._layers = self._staged_layers
            self._symbols = self._staged_symbols
            self._end_transaction()

    def rollback(self) -> None:
        with self._lock:
            self._end_transaction()

    def _end_transaction(self) -> None:
        self._staged_layers = None
        self._staged_symbols = None
        self._touched = set()

    def _persist(self, layers: Dict[str, List[Primitive]], touched: Set[str]) -> None:
        """Hook for file-backed subclasses, called before the staged state becomes visible."""

    def _require_transaction(self) -> None:
        if not self.in_transaction:
            raise TransactionError("No open transaction")

    def _staged(self, handle: LayerHandle) -> List[Primitive]:
        self._require_transaction()
        try:
            return self._staged_layers[handle.name]
        except KeyError:
            raise KeyError(f"Layer not created in this transaction: {handle.name}") from None

    def ensure_layer(self, name: str) -> LayerHandle:
        if not name:
            raise ValueError("Layer name must not be empty")
        with self._lock:
            self._require_transaction()
            if name not in self._staged_layers:
                logger.debug(f"Creating layer {name}")
                self._staged_layers[name] = []
                self._touched.add(name)
        return LayerHandle(name)

    def clear_layer(self, handle: LayerHandle) -> int:
        items = self._staged(handle)
        removed = len(items)
        items.clear()
        self._touched.add(handle.name)
        return removed

    def _emit(self, handle: LayerHandle, primitive: Primitive) -> None:
        self._staged(handle).append(primitive)
        self._touched.add(handle.name)

    def emit_point(self, handle: LayerHandle, vertex: Vertex, radius: float = 1.0) -> None:
        self._emit(handle, Primitive(PrimitiveKind.POINT, (tuple(vertex),), radius=radius))

    def emit_polyline(self, handle: LayerHandle, vertices: Sequence[Vertex], closed: bool = False) -> None:
        self._emit(
            handle,
            Primitive(PrimitiveKind.POLYLINE, tuple(tuple(v) for v in vertices), closed=closed),
        )

    def emit_symbol_instance(
        self, handle: LayerHandle, symbol: str, vertex: Vertex, attributes: Mapping[str, str]
    ) -> None:
        self._emit(
            handle,
            Primitive(
                PrimitiveKind.SYMBOL, (tuple(vertex),), symbol=symbol, attributes=dict(attributes)
            ),
        )

    def define_symbol(self, definition: SymbolDefinition) -> None:
        self._require_transaction()
        self._staged_symbols[definition.name] = definition

    def get_symbol(self, name: str) -> Optional[SymbolDefinition]:
        table = self._staged_symbols if self.in_transaction else self._symbols
        return table.get(name)

    def symbols(self) -> Dict[str, SymbolDefinition]:
        table = self._staged_symbols if self.in_transaction else self._symbols
        return dict(table)

    def layer_names(self) -> List[str]:
        return list(self._layers)

    def primitives(self, name: str) -> List[Primitive]:
        return list(self._layers.get(name, []))
