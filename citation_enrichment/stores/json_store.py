from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List

from citation_enrichment.exceptions import RecordStoreError
from citation_enrichment.stores.memory import InMemoryRecordStore, LibraryRecord

logger = logging.getLogger(__name__)

STORE_VERSION = 1


def _atomic_write_text(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding="utf-8") as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    try:
        os.replace(tmp_path, path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise


class JsonRecordStore(InMemoryRecordStore):
    """Record store persisted as a single JSON document.

    Every save rewrites the whole file atomically. A missing file starts an
    empty store.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._write_lock = threading.Lock()
        super().__init__(self._load())

    def _load(self) -> List[LibraryRecord]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise RecordStoreError(f"Cannot read record store {self.path}: {exc}") from exc

        items = data.get("records") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise RecordStoreError(f"Record store {self.path} has no record list")
        try:
            return [LibraryRecord.from_dict(item) for item in items]
        except (TypeError, ValueError, AttributeError) as exc:
            raise RecordStoreError(f"Invalid record in {self.path}: {exc}") from exc

    def _payload(self) -> Dict[str, Any]:
        return {
            "version": STORE_VERSION,
            "records": [record.to_dict() for record in self.list_all_records()],
        }

    def save(self, record: LibraryRecord) -> None:
        with self._write_lock:
            try:
                _atomic_write_text(
                    self.path, json.dumps(self._payload(), indent=2, ensure_ascii=False)
                )
            except OSError as exc:
                raise RecordStoreError(f"Cannot write record store {self.path}: {exc}") from exc
        logger.debug("Saved record %s to %s", record.key, self.path)
