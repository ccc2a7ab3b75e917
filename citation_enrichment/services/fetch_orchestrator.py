"""Per-record and per-record-set fetch strategies.

Example
-------
```python
orchestrator = FetchOrchestrator(client=SemanticScholarClient(), scheduler=RetryScheduler())
report = orchestrator.fetch_for_record_set(records)
print(report.summary())
```
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from citation_enrichment.core.identifiers import get_catalog_id, resolve_identifiers
from citation_enrichment.core.models import (
    CatalogResult,
    FetchOutcome,
    Found,
    IdentifierKind,
    NotFound,
    RateLimited,
    Record,
)
from citation_enrichment.core.preferences import Preferences
from citation_enrichment.providers.clients.semanticscholar import (
    SemanticScholarClient,
    build_fields_param,
)
from citation_enrichment.services.field_merger import FieldMerger
from citation_enrichment.services.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)

DEFAULT_RECORD_PACING_SECONDS = 0.2

LookupStrategy = Tuple[str, Callable[[], FetchOutcome]]


def first_decisive(strategies: Iterable[LookupStrategy]) -> FetchOutcome:
    """Run strategies in order, stopping at the first ``Found`` or ``RateLimited``."""

    for label, strategy in strategies:
        outcome = strategy()
        if isinstance(outcome, (Found, RateLimited)):
            logger.debug("Lookup by %s decided: %s", label, type(outcome).__name__)
            return outcome
    return NotFound()


@dataclass
class FetchReport:
    """Tally of a record-set fetch."""

    found: int = 0
    not_found: int = 0
    queued: int = 0
    failed: int = 0
    via_batch: int = 0
    outcomes: Dict[Hashable, FetchOutcome] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.found + self.not_found + self.queued + self.failed

    def summary(self) -> str:
        message = f"Found: {self.found}, Not found: {self.not_found + self.failed}"
        if self.queued:
            message += f", Queued: {self.queued}"
        return message


class FetchOrchestrator:
    """Compose identifier resolution, catalog lookups, retries and merging."""

    def __init__(
        self,
        *,
        client: SemanticScholarClient,
        scheduler: RetryScheduler,
        preferences: Optional[Preferences] = None,
        merger: Optional[FieldMerger] = None,
        record_pacing_delay: float = DEFAULT_RECORD_PACING_SECONDS,
        rate_limit_cooldown: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.scheduler = scheduler
        self.preferences = preferences or Preferences()
        self.merger = merger or FieldMerger()
        self.record_pacing_delay = record_pacing_delay
        self.rate_limit_cooldown = rate_limit_cooldown
        self._sleep = sleep

    def fields_param(self) -> str:
        return build_fields_param(self.preferences.should_fetch_field)

    def lookup_strategies(self, record: Record, fields: str) -> List[LookupStrategy]:
        strategies: List[LookupStrategy] = []
        candidates = resolve_identifiers(
            record, include_title=self.preferences.title_search_enabled
        )
        for kind, value in candidates:
            if kind is IdentifierKind.TITLE:
                strategies.append(
                    ("title", lambda value=value: self.client.search_by_title(value, fields))
                )
            else:
                strategies.append(
                    (
                        kind.value,
                        lambda kind=kind, value=value: self.client.lookup_by_identifier(
                            kind, value, fields
                        ),
                    )
                )
        return strategies

    def fetch_for_record(self, record: Record) -> FetchOutcome:
        """Resolve a single record against the catalog."""

        return first_decisive(self.lookup_strategies(record, self.fields_param()))

    def apply(self, record: Record, result: CatalogResult) -> List[str]:
        return self.merger.apply_result(
            record,
            result,
            self.preferences.should_fetch_field,
            self.preferences.overwrite_existing_fields,
        )

    def fetch_and_apply(self, record: Record) -> FetchOutcome:
        """Fetch one record, applying a hit and queueing a rate-limited miss."""

        outcome = self.fetch_for_record(record)
        if isinstance(outcome, Found):
            self.apply(record, outcome.result)
        elif isinstance(outcome, RateLimited):
            self.scheduler.enqueue(record, retry_after=outcome.retry_after)
        return outcome

    def fetch_for_record_set(
        self,
        records: Sequence[Record],
        *,
        pacing_delay: Optional[float] = None,
        cooldown: Optional[float] = None,
    ) -> FetchReport:
        """Fetch a set of records, batching those with a known catalog id.

        Records the batch path does not resolve (no catalog id, a miss, or an
        aborted batch) are retried one by one with a pacing delay between them.
        ``pacing_delay`` and ``cooldown`` override the configured pauses for
        this pass.
        """

        if pacing_delay is None:
            pacing_delay = self.record_pacing_delay
        if cooldown is None:
            cooldown = self.rate_limit_cooldown

        report = FetchReport()
        unique: List[Record] = []
        seen = set()
        for record in records:
            if record.key not in seen:
                seen.add(record.key)
                unique.append(record)

        with_ids: List[Tuple[Record, str]] = []
        for record in unique:
            catalog_id = get_catalog_id(record)
            if catalog_id:
                with_ids.append((record, catalog_id))

        fields = self.fields_param()
        resolved = set()
        if with_ids:
            batch_outcomes = self.client.batch_lookup([cid for _, cid in with_ids], fields)
            for (record, _), outcome in zip(with_ids, batch_outcomes):
                if not isinstance(outcome, Found):
                    continue
                try:
                    self.apply(record, outcome.result)
                except Exception:
                    logger.exception("Applying batch result failed for %s", record.key)
                    continue
                resolved.add(record.key)
                report.found += 1
                report.via_batch += 1
                report.outcomes[record.key] = outcome

        remaining = [record for record in unique if record.key not in resolved]
        logger.info(
            "%s records updated via batch, %s remaining", report.via_batch, len(remaining)
        )

        for index, record in enumerate(remaining):
            try:
                outcome = self.fetch_and_apply(record)
            except Exception:
                logger.exception("Error fetching data for %s", record.key)
                report.failed += 1
            else:
                report.outcomes[record.key] = outcome
                if isinstance(outcome, Found):
                    report.found += 1
                elif isinstance(outcome, RateLimited):
                    report.queued += 1
                    if cooldown:
                        self._sleep(cooldown)
                else:
                    report.not_found += 1

            if index < len(remaining) - 1:
                self._sleep(pacing_delay)

        logger.info("Record set fetch complete. %s", report.summary())
        return report
