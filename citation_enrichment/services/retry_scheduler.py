"""Retry queue for rate-limited records, drained with a global exponential backoff.

Example
-------
```python
scheduler = RetryScheduler()
scheduler.enqueue(record)
scheduler.drain(orchestrator.fetch_for_record, merger.apply)
```
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Hashable, List, Optional, Tuple

from citation_enrichment.core.models import (
    CatalogResult,
    FetchOutcome,
    Found,
    NotFound,
    RateLimited,
    Record,
    RetryEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_FLOOR_SECONDS = 2.0
DEFAULT_CEILING_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_PACING_SECONDS = 0.5

FetchFn = Callable[[Record], FetchOutcome]
ApplyFn = Callable[[Record, CatalogResult], object]


class RetryScheduler:
    """Hold rate-limited records and retry them with a shared backoff delay.

    The delay is global rather than per entry: a rate-limit signal slows every
    pending retry, and a success restores the floor for all of them. A record
    is held at most once, counting the entry currently being retried.

    A ``Retry-After`` hint (capped at the ceiling) lengthens only the next
    wait; it does not change the doubling state.
    """

    def __init__(
        self,
        *,
        floor: float = DEFAULT_FLOOR_SECONDS,
        ceiling: float = DEFAULT_CEILING_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        pacing_delay: float = DEFAULT_PACING_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if ceiling < floor:
            raise ValueError("ceiling must not be lower than floor")
        self.floor = floor
        self.ceiling = ceiling
        self.max_retries = max_retries
        self.pacing_delay = pacing_delay
        self._sleep = sleep
        self._delay = floor
        self._retry_after: Optional[float] = None
        self._queue: Deque[RetryEntry] = deque()
        self._in_flight: Optional[Hashable] = None
        self._queue_lock = threading.Lock()
        self._drain_lock = threading.Lock()

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    def __len__(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def has_pending(self) -> bool:
        return len(self) > 0

    def pending(self) -> List[Tuple[Hashable, int]]:
        with self._queue_lock:
            return [(entry.record.key, entry.retry_count) for entry in self._queue]

    def _holds(self, key: Hashable) -> bool:
        return key == self._in_flight or any(entry.record.key == key for entry in self._queue)

    def enqueue(
        self, record: Record, retry_count: int = 0, retry_after: Optional[float] = None
    ) -> bool:
        """Append ``record`` unless it is already held or out of attempts."""

        if retry_count >= self.max_retries:
            logger.warning(
                "Max retries reached for %s", record.get_field("title") or record.key
            )
            return False

        with self._queue_lock:
            if self._holds(record.key):
                return False
            self._queue.append(RetryEntry(record=record, retry_count=retry_count))
            self._note_retry_after(retry_after)

        logger.info(
            "Added to retry queue: %s (attempt %s)",
            record.get_field("title") or record.key,
            retry_count + 1,
        )
        return True

    def clear(self) -> None:
        with self._queue_lock:
            self._queue.clear()
        self._delay = self.floor
        self._retry_after = None

    def _note_retry_after(self, seconds: Optional[float]) -> None:
        if seconds:
            self._retry_after = max(self._retry_after or 0.0, min(seconds, self.ceiling))

    def _next_wait(self) -> float:
        wait = max(self._delay, self._retry_after or 0.0)
        self._retry_after = None
        return wait

    def drain(self, fetch_fn: FetchFn, apply_fn: ApplyFn) -> bool:
        """Retry queued records until the queue is empty.

        Returns ``False`` without doing anything when another drain is already
        running.
        """

        drained = False
        while self._drain_lock.acquire(blocking=False):
            drained = True
            try:
                self._drain_queue(fetch_fn, apply_fn)
            finally:
                self._drain_lock.release()
            # Pick up records enqueued between the last check and the release.
            if not self.has_pending():
                break

        if not drained:
            logger.debug("Retry queue is already being drained")
        return drained

    def _drain_queue(self, fetch_fn: FetchFn, apply_fn: ApplyFn) -> None:
        logger.info("Processing retry queue: %s items", len(self))
        while self.has_pending():
            wait = self._next_wait()
            logger.debug("Waiting %.1fs before retry", wait)
            self._sleep(wait)

            with self._queue_lock:
                if not self._queue:
                    break
                entry = self._queue.popleft()
                self._in_flight = entry.record.key

            try:
                self._retry(entry, fetch_fn, apply_fn)
            finally:
                self._in_flight = None

            self._sleep(self.pacing_delay)
        logger.info("Retry queue processing complete")

    def drain_in_background(
        self, fetch_fn: FetchFn, apply_fn: ApplyFn
    ) -> Optional[threading.Thread]:
        """Start :meth:`drain` on a daemon thread unless a drain is running."""

        if self.is_draining or not self.has_pending():
            return None
        thread = threading.Thread(
            target=self.drain, args=(fetch_fn, apply_fn), name="retry-drain", daemon=True
        )
        thread.start()
        return thread

    def _retry(self, entry: RetryEntry, fetch_fn: FetchFn, apply_fn: ApplyFn) -> None:
        record = entry.record
        title = record.get_field("title") or record.key
        logger.info("Retrying: %s (attempt %s)", title, entry.retry_count + 2)

        try:
            outcome = fetch_fn(record)
        except Exception:
            logger.exception("Retry fetch raised for %s; dropping it", title)
            return

        if isinstance(outcome, RateLimited):
            next_count = entry.retry_count + 1
            if next_count >= self.max_retries:
                logger.warning(
                    "Dropping %s after %s rate-limited attempts", title, next_count
                )
            else:
                with self._queue_lock:
                    self._queue.appendleft(RetryEntry(record=record, retry_count=next_count))
                    self._note_retry_after(outcome.retry_after)
            self._delay = min(self._delay * 2, self.ceiling)
            logger.info("Rate limited, increasing delay to %.1fs", self._delay)
        elif isinstance(outcome, Found):
            try:
                apply_fn(record, outcome.result)
            except Exception:
                logger.exception("Applying retried result failed for %s", title)
            else:
                logger.info("Retry successful: %s", title)
            self._delay = self.floor
        else:
            reason = outcome.reason if isinstance(outcome, NotFound) else "unknown"
            logger.info("Retry failed (%s): %s", reason, title)
