"""Typed access to host preferences that steer fetching and merging."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from citation_enrichment.exceptions import ConfigError

logger = logging.getLogger(__name__)

SEARCH_MODE_IDENTIFIERS = "identifiers"
SEARCH_MODE_TITLE = "title"
SEARCH_MODES = (SEARCH_MODE_IDENTIFIERS, SEARCH_MODE_TITLE)


@dataclass(frozen=True)
class FieldDefinition:
    label: str
    kind: str  # "metric", "field" or "extra"
    default: bool = False


FIELD_DEFINITIONS: Dict[str, FieldDefinition] = {
    "citationCount": FieldDefinition("Citation Count", "metric", True),
    "influentialCitationCount": FieldDefinition("Influential Citation Count", "metric", True),
    "referenceCount": FieldDefinition("Reference Count", "metric"),
    "DOI": FieldDefinition("DOI", "field"),
    "abstract": FieldDefinition("Abstract", "field"),
    "publicationDate": FieldDefinition("Publication Date", "field"),
    "venue": FieldDefinition("Publication/Venue", "field"),
    "openAccessPdf": FieldDefinition("Open Access PDF URL", "field"),
    "arXivId": FieldDefinition("arXiv ID", "extra"),
    "fieldsOfStudy": FieldDefinition("Fields of Study", "extra"),
}


@runtime_checkable
class PreferenceStore(Protocol):
    def get_preference(self, name: str, default: Any) -> Any: ...

    def set_preference(self, name: str, value: Any) -> None: ...


class InMemoryPreferences:
    """Dict-backed preference store."""

    def __init__(self, values: Optional[Dict[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})

    def get_preference(self, name: str, default: Any) -> Any:
        return self._values.get(name, default)

    def set_preference(self, name: str, value: Any) -> None:
        self._values[name] = value


class Preferences:
    """Preference accessors with the defaults shipped by the host integration."""

    def __init__(self, store: Optional[PreferenceStore] = None) -> None:
        self.store = store if store is not None else InMemoryPreferences()

    def _get(self, name: str, default: Any) -> Any:
        value = self.store.get_preference(name, default)
        return default if value is None else value

    @property
    def auto_fetch(self) -> bool:
        return bool(self._get("auto_fetch", True))

    @property
    def update_on_startup(self) -> bool:
        return bool(self._get("update_on_startup", True))

    @property
    def search_mode(self) -> str:
        mode = self._get("search_mode", SEARCH_MODE_TITLE)
        if mode not in SEARCH_MODES:
            raise ConfigError(f"Unknown search mode: {mode!r}")
        return mode

    @property
    def title_search_enabled(self) -> bool:
        return self.search_mode == SEARCH_MODE_TITLE

    @property
    def overwrite_existing_fields(self) -> bool:
        return bool(self._get("overwrite_existing_fields", False))

    def should_fetch_field(self, name: str) -> bool:
        definition = FIELD_DEFINITIONS.get(name)
        if definition is None:
            logger.debug("should_fetch_field: unknown field %s", name)
            return False
        return bool(self._get(f"fetch.{name}", definition.default))

    def set_search_mode(self, mode: str) -> None:
        if mode not in SEARCH_MODES:
            raise ConfigError(f"Unknown search mode: {mode!r}")
        self.store.set_preference("search_mode", mode)

    def set_field_enabled(self, name: str, enabled: bool) -> None:
        if name not in FIELD_DEFINITIONS:
            raise ConfigError(f"Unknown field: {name!r}")
        self.store.set_preference(f"fetch.{name}", enabled)
