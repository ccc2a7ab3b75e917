"""Reference record stores implementing the host record capabilities."""

from .json_store import JsonRecordStore
from .memory import (
    InMemoryRecordStore,
    LibraryRecord,
    decode_side_data,
    encode_side_data,
)

__all__ = [
    "InMemoryRecordStore",
    "JsonRecordStore",
    "LibraryRecord",
    "decode_side_data",
    "encode_side_data",
]
