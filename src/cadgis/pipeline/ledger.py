# src/cadgis/pipeline/ledger.py
"""
Layer metadata ledger.

Records, for every drawing layer imported from PostGIS, where its features
came from so that the layer can be refreshed later. The ledger is a JSON
list stored in the user config directory; field names are fixed.
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cadgis.core.exceptions import LedgerError


class LayerMeta(BaseModel):
    """Provenance of one imported drawing layer."""

    model_config = ConfigDict(populate_by_name=True)

    layer_name: str = Field(alias="AcadLayer")
    host: Optional[str] = Field(None, alias="Host")
    database: Optional[str] = Field(None, alias="Database")
    username: Optional[str] = Field(None, alias="Username")
    schema_name: Optional[str] = Field(None, alias="Schema")
    table: Optional[str] = Field(None, alias="Table")
    geom_column: Optional[str] = Field(None, alias="GeomColumn")
    geom_type: Optional[str] = Field(None, alias="GeomType")
    srid: int = Field(0, alias="Srid")
    import_sql: Optional[str] = Field(None, alias="ImportSql")
    owning_document: Optional[str] = Field(None, alias="DwgFile")
    last_imported: datetime = Field(default_factory=datetime.now, alias="LastImported")

    def to_record(self) -> dict:
        """JSON-ready dict with every field present under its persisted name."""
        return self.model_dump(mode="json", by_alias=True)

    @property
    def source(self) -> str:
        if self.import_sql:
            return "query"
        return f"{self.schema_name}.{self.table}"


class LayerLedger:
    """
    JSON-file ledger, read-modify-write on every change.

    Concurrent writers are not coordinated: the last writer wins.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def __repr__(self):
        return f"<LayerLedger {self.path}>"

    def _load(self) -> List[LayerMeta]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            return [LayerMeta.model_validate(item) for item in data or []]
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            raise LedgerError(f"Cannot read layer metadata {self.path}: {e}") from e

    def _save(self, items: List[LayerMeta]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps([m.to_record() for m in items], indent=2), encoding="utf-8"
            )
        except OSError as e:
            raise LedgerError(f"Cannot write layer metadata {self.path}: {e}") from e

    def list(self) -> List[LayerMeta]:
        return self._load()

    def get(self, layer_name: str) -> Optional[LayerMeta]:
        for meta in self._load():
            if meta.layer_name == layer_name:
                return meta
        return None

    def upsert(self, meta: LayerMeta) -> None:
        """Add a record, replacing any record for the same layer."""
        with self._lock:
            items = [m for m in self._load() if m.layer_name != meta.layer_name]
            items.append(meta)
            self._save(items)
        logger.debug(f"Recorded metadata for layer {meta.layer_name}")

    def remove(self, layer_name: str) -> bool:
        with self._lock:
            items = self._load()
            kept = [m for m in items if m.layer_name != layer_name]
            if len(kept) == len(items):
                return False
            self._save(kept)
        logger.debug(f"Removed metadata for layer {layer_name}")
        return True

    def prune(self, open_document_ids: Iterable[str]) -> List[LayerMeta]:
        """
        Drop records whose owning document is not open.

        Records without an owning document are kept. Document ids are
        compared case-insensitively.

        Returns:
            The removed records
        """
        open_ids = {d.lower() for d in open_document_ids if d}
        with self._lock:
            items = self._load()
            kept, removed = [], []
            for meta in items:
                if meta.owning_document and meta.owning_document.lower() not in open_ids:
                    removed.append(meta)
                else:
                    kept.append(meta)
            if removed:
                self._save(kept)
        if removed:
            logger.info(f"Pruned {len(removed)} layer record(s) of closed documents")
        return removed


def default_ledger_path() -> Path:
    from cadgis.config import LEDGER_FILENAME, get_config_dir

    return get_config_dir() / LEDGER_FILENAME
