"""Core data models, identifiers, and configuration for citation_enrichment."""

from .identifiers import normalize_doi, normalize_title, resolve_identifiers, titles_match
from .models import (
    CatalogResult,
    FetchOutcome,
    Found,
    IdentifierKind,
    NotFound,
    RateLimited,
    Record,
    RecordKind,
    RecordStore,
    RetryEntry,
    SideData,
)
from .preferences import FIELD_DEFINITIONS, InMemoryPreferences, PreferenceStore, Preferences
from .settings import EnrichmentSettings

__all__ = [
    "CatalogResult",
    "EnrichmentSettings",
    "FIELD_DEFINITIONS",
    "FetchOutcome",
    "Found",
    "IdentifierKind",
    "InMemoryPreferences",
    "NotFound",
    "PreferenceStore",
    "Preferences",
    "RateLimited",
    "Record",
    "RecordKind",
    "RecordStore",
    "RetryEntry",
    "SideData",
    "normalize_doi",
    "normalize_title",
    "resolve_identifiers",
    "titles_match",
]
