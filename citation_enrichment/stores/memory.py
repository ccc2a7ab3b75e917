"""In-memory records and record store."""

from __future__ import annotations

import itertools
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional

from citation_enrichment.core.models import Record, RecordKind, SideData

logger = logging.getLogger(__name__)

SIDE_DATA_TAG = "semantic-scholar-data"
_SIDE_DATA_PATTERN = re.compile(
    rf"<{SIDE_DATA_TAG}>([\s\S]*?)</{SIDE_DATA_TAG}>"
)
DEFAULT_LIBRARY = "My Library"


def encode_side_data(data: SideData) -> str:
    """Wrap side data in the hidden-note format."""

    payload = json.dumps(data.to_dict(), sort_keys=True)
    return f"<{SIDE_DATA_TAG}>{payload}</{SIDE_DATA_TAG}>"


def decode_side_data(note: str) -> Optional[SideData]:
    """Read side data back from a note, ignoring notes that do not carry it."""

    match = _SIDE_DATA_PATTERN.search(note or "")
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    return SideData.from_dict(payload)


@dataclass
class LibraryRecord:
    """A bibliographic record with free-form fields and child notes.

    Side data lives in a hidden child note so it never leaks into exported
    fields.
    """

    key: str
    item_type: str = RecordKind.JOURNAL_ARTICLE.value
    fields: Dict[str, str] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)
    library: str = DEFAULT_LIBRARY
    on_save: Optional[Callable[["LibraryRecord"], None]] = field(
        default=None, repr=False, compare=False
    )

    @property
    def kind(self) -> RecordKind:
        return RecordKind.from_value(self.item_type)

    def get_field(self, name: str) -> Optional[str]:
        value = self.fields.get(name)
        return value if value else None

    def set_field(self, name: str, value: str) -> None:
        self.fields[name] = value

    def _side_note_index(self) -> Optional[int]:
        for index, note in enumerate(self.notes):
            if f"<{SIDE_DATA_TAG}>" in note:
                return index
        return None

    def get_side_data(self) -> Optional[SideData]:
        index = self._side_note_index()
        if index is None:
            return None
        return decode_side_data(self.notes[index])

    def set_side_data(self, data: SideData) -> None:
        note = encode_side_data(data)
        index = self._side_note_index()
        if index is None:
            self.notes.append(note)
        else:
            self.notes[index] = note

    def save(self) -> None:
        if self.on_save is not None:
            self.on_save(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "itemType": self.item_type,
            "library": self.library,
            "fields": dict(self.fields),
            "notes": list(self.notes),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "LibraryRecord":
        if not payload.get("key"):
            raise ValueError("record is missing a key")
        return cls(
            key=str(payload["key"]),
            item_type=payload.get("itemType") or RecordKind.JOURNAL_ARTICLE.value,
            fields={str(k): str(v) for k, v in (payload.get("fields") or {}).items() if v is not None},
            notes=[str(note) for note in payload.get("notes") or []],
            library=payload.get("library") or DEFAULT_LIBRARY,
        )


class InMemoryRecordStore:
    """Record store keeping records in insertion order."""

    def __init__(self, records: Optional[List[LibraryRecord]] = None) -> None:
        self._records: Dict[str, LibraryRecord] = {}
        self._observers: Dict[int, Callable[[Record], None]] = {}
        self._handles = itertools.count(1)
        for record in records or []:
            self._attach(record)

    def _attach(self, record: LibraryRecord) -> None:
        record.on_save = self.save
        self._records[record.key] = record

    def __len__(self) -> int:
        return len(self._records)

    def get(self, key: str) -> Optional[LibraryRecord]:
        return self._records.get(key)

    def add(self, record: LibraryRecord) -> LibraryRecord:
        """Add a new record and notify creation observers."""

        self._attach(record)
        self.save(record)
        for callback in list(self._observers.values()):
            callback(record)
        return record

    def list_all_records(self, scope: Optional[str] = None) -> List[LibraryRecord]:
        return [
            record
            for record in self._records.values()
            if scope is None or record.library == scope
        ]

    def libraries(self) -> List[str]:
        return list(dict.fromkeys(record.library for record in self._records.values()))

    def on_record_created(self, callback: Callable[[Record], None]) -> Hashable:
        handle = next(self._handles)
        self._observers[handle] = callback
        return handle

    def remove_observer(self, handle: Hashable) -> None:
        self._observers.pop(handle, None)  # type: ignore[call-overload]

    def save(self, record: LibraryRecord) -> None:
        logger.debug("Saved record %s", record.key)
