"""High-level enrichment API tying the fetch engine to a host record store.

This module exposes the :class:`CitationEnricher` facade used by the package
level helpers in :mod:`citation_enrichment.__init__` and by the CLI. The
facade owns one retry scheduler, so every fetch path it offers shares the same
rate-limit backoff.

Example: enrich a selection
---------------------------
```python
from citation_enrichment.api import CitationEnricher
from citation_enrichment.stores import JsonRecordStore

store = JsonRecordStore("library.json")
enricher = CitationEnricher(store=store)
report = enricher.fetch_records(store.list_all_records(), wait=True)
print(report.summary())
```
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Hashable, Optional, Sequence, Union

import requests

from .core.identifiers import get_catalog_id
from .core.models import FetchOutcome, Record, RecordStore, catalog_url_for
from .core.preferences import PreferenceStore, Preferences
from .core.settings import EnrichmentSettings
from .providers.clients.semanticscholar import SemanticScholarClient
from .services.fetch_orchestrator import FetchOrchestrator, FetchReport
from .services.field_merger import FieldMerger
from .services.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)


class CitationEnricher:
    """Facade around the fetch, retry and merge workflows of a record library."""

    def __init__(
        self,
        settings: Optional[EnrichmentSettings] = None,
        *,
        preferences: Union[Preferences, PreferenceStore, None] = None,
        store: Optional[RecordStore] = None,
        session: Optional[requests.Session] = None,
        client: Optional[SemanticScholarClient] = None,
        scheduler: Optional[RetryScheduler] = None,
        merger: Optional[FieldMerger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or EnrichmentSettings()
        if isinstance(preferences, Preferences):
            self.preferences = preferences
        else:
            self.preferences = Preferences(preferences)
        self.store = store
        self._sleep = sleep

        self.client = client or SemanticScholarClient(
            session=self.settings.build_session(session),
            base_url=self.settings.base_url,
            api_key=self.settings.api_key,
            timeout=self.settings.timeout,
            batch_timeout=self.settings.batch_timeout,
            batch_size=self.settings.batch_size,
            batch_pacing_delay=self.settings.batch_pacing_delay,
            sleep=sleep,
            debug_logging=self.settings.debug_logging,
        )
        self.scheduler = scheduler or RetryScheduler(
            floor=self.settings.retry_floor,
            ceiling=self.settings.retry_ceiling,
            max_retries=self.settings.max_retries,
            pacing_delay=self.settings.retry_pacing_delay,
            sleep=sleep,
        )
        self.orchestrator = FetchOrchestrator(
            client=self.client,
            scheduler=self.scheduler,
            preferences=self.preferences,
            merger=merger or FieldMerger(),
            record_pacing_delay=self.settings.record_pacing_delay,
            rate_limit_cooldown=self.settings.rate_limit_cooldown,
            sleep=sleep,
        )

        self._observer: Optional[Hashable] = None
        self._startup_timer: Optional[threading.Timer] = None

    def process_retry_queue(self, *, wait: bool = False) -> Optional[threading.Thread]:
        """Drain pending retries, in the background unless ``wait`` is set."""

        if not self.scheduler.has_pending():
            return None
        if wait:
            self.scheduler.drain(self.orchestrator.fetch_for_record, self.orchestrator.apply)
            return None
        return self.scheduler.drain_in_background(
            self.orchestrator.fetch_for_record, self.orchestrator.apply
        )

    def fetch_record(self, record: Record, *, wait: bool = False) -> FetchOutcome:
        """Refresh one record; a rate-limited record is queued for retry."""

        outcome = self.orchestrator.fetch_and_apply(record)
        self.process_retry_queue(wait=wait)
        return outcome

    def fetch_records(self, records: Sequence[Record], *, wait: bool = False) -> FetchReport:
        """Fetch a selection of records, then work off the retry queue."""

        if not records:
            logger.info("No records selected")
            return FetchReport()

        logger.info("Fetching data for %s records", len(records))
        report = self.orchestrator.fetch_for_record_set(records)
        self.process_retry_queue(wait=wait)
        return report

    def fetch_for_new_record(self, record: Record, *, wait: bool = False) -> Optional[FetchOutcome]:
        """Auto-fetch for a newly created record when the preference allows it."""

        if not self.preferences.auto_fetch:
            return None

        logger.info("Auto-fetching data for new record: %s", record.get_field("title") or record.key)
        self._sleep(self.settings.auto_fetch_delay)
        return self.fetch_record(record, wait=wait)

    def update_library(
        self, scope: Optional[str] = None, *, force: bool = False, wait: bool = False
    ) -> Optional[FetchReport]:
        """Refresh every record of the store (or of one library scope)."""

        if not force and not self.preferences.update_on_startup:
            logger.info("Startup library update disabled")
            return None
        if self.store is None:
            raise RuntimeError("update_library requires a record store")

        records = self.store.list_all_records(scope)
        logger.info("Starting library update for %s records", len(records))
        report = self.orchestrator.fetch_for_record_set(
            records,
            pacing_delay=self.settings.library_pacing_delay,
            cooldown=self.settings.library_rate_limit_cooldown,
        )
        self.process_retry_queue(wait=wait)
        logger.info("Library update complete. %s", report.summary())
        return report

    def catalog_url(self, record: Record) -> Optional[str]:
        return catalog_url_for(get_catalog_id(record))

    def start(self, *, run_startup_update: bool = True) -> None:
        """Register for new-record notifications and schedule the startup update."""

        if self.store is None:
            raise RuntimeError("start requires a record store")
        if self._observer is None:
            self._observer = self.store.on_record_created(self._on_record_created)
            logger.info("Observer registered for new records")

        if (
            run_startup_update
            and self._startup_timer is None
            and self.preferences.update_on_startup
        ):
            self._startup_timer = threading.Timer(
                self.settings.startup_update_delay, self.update_library
            )
            self._startup_timer.daemon = True
            self._startup_timer.start()

    def shutdown(self) -> None:
        """Unregister observers and drop transient retry state."""

        if self._startup_timer is not None:
            self._startup_timer.cancel()
            self._startup_timer = None
        if self._observer is not None and self.store is not None:
            self.store.remove_observer(self._observer)
            self._observer = None
        self.scheduler.clear()
        logger.info("Citation enricher shut down")

    def _on_record_created(self, record: Record) -> None:
        self.fetch_for_new_record(record)
