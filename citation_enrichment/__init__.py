"""Process-wide helpers for enriching records with catalog citation metadata."""

from __future__ import annotations

import atexit
from typing import Optional, Sequence

from .api import CitationEnricher
from .core.models import CatalogResult, FetchOutcome, Found, NotFound, RateLimited, Record
from .services.fetch_orchestrator import FetchReport

_default_enricher: Optional[CitationEnricher] = None
_shutdown_callback_registered = False


def get_default_enricher() -> CitationEnricher:
    """Return the default ``CitationEnricher`` instance, creating it lazily."""

    global _default_enricher, _shutdown_callback_registered
    if _default_enricher is None:
        _default_enricher = CitationEnricher()
    if not _shutdown_callback_registered:
        atexit.register(_default_enricher.shutdown)
        _shutdown_callback_registered = True
    return _default_enricher


def fetch_record(record: Record) -> FetchOutcome:
    """Fetch catalog data for one record, queueing it for retry when rate limited."""

    return get_default_enricher().fetch_record(record)


def fetch_records(records: Sequence[Record]) -> FetchReport:
    """Fetch catalog data for a set of records."""

    return get_default_enricher().fetch_records(records)


__all__ = [
    "CatalogResult",
    "CitationEnricher",
    "FetchOutcome",
    "FetchReport",
    "Found",
    "NotFound",
    "RateLimited",
    "fetch_record",
    "fetch_records",
    "get_default_enricher",
]
