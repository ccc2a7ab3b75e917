from __future__ import annotations

from typing import Dict, List

import pytest

import citation_enrichment
from citation_enrichment import api
from citation_enrichment.api import CitationEnricher
from citation_enrichment.core.models import (
    CatalogResult,
    Found,
    IdentifierKind,
    NotFound,
    RateLimited,
    SideData,
)
from citation_enrichment.core.preferences import InMemoryPreferences
from citation_enrichment.core.settings import EnrichmentSettings
from citation_enrichment.services.retry_scheduler import RetryScheduler
from citation_enrichment.stores.memory import InMemoryRecordStore, LibraryRecord


class _StubClient:
    """Catalog stub answering DOI lookups from scripted outcome lists."""

    def __init__(self, script: Dict[str, List[object]]):
        self.script = {key: list(outcomes) for key, outcomes in script.items()}
        self.calls: List[str] = []

    def lookup_by_identifier(self, kind, value, fields):
        self.calls.append(value)
        outcomes = self.script.get(value)
        return outcomes.pop(0) if outcomes else NotFound()

    def search_by_title(self, title, fields):
        return NotFound()

    def batch_lookup(self, ids, fields):
        return [NotFound()] * len(ids)


def _found(paper_id: str = "p1", citations: int = 9) -> Found:
    return Found(CatalogResult(paper_id=paper_id, citation_count=citations))


def _enricher(client, store=None, sleeps=None, **prefs) -> CitationEnricher:
    no_sleep = lambda seconds: None  # noqa: E731
    return CitationEnricher(
        EnrichmentSettings(_env_file=None),
        preferences=InMemoryPreferences(prefs),
        store=store,
        client=client,
        scheduler=RetryScheduler(sleep=no_sleep),
        sleep=sleeps.append if sleeps is not None else no_sleep,
    )


class _StubTimer:
    """Stands in for ``threading.Timer``; runs the callback when started."""

    created: List["_StubTimer"] = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.cancelled = False
        _StubTimer.created.append(self)

    def start(self):
        self.function()

    def cancel(self):
        self.cancelled = True


def test_rate_limited_record_is_retried_until_found():
    client = _StubClient({"10.1/a": [RateLimited(), RateLimited(), _found()]})
    record = LibraryRecord(key="A", fields={"DOI": "10.1/a"})
    enricher = _enricher(client)

    outcome = enricher.fetch_record(record, wait=True)

    assert isinstance(outcome, RateLimited)
    assert client.calls == ["10.1/a"] * 3
    assert record.get_side_data().citation_count == 9
    assert not enricher.scheduler.has_pending()


def test_fetch_records_reports_and_drains_queue():
    client = _StubClient({"10.1/a": [_found()], "10.1/b": [RateLimited(), _found("p2")]})
    records = [
        LibraryRecord(key="A", fields={"DOI": "10.1/a"}),
        LibraryRecord(key="B", fields={"DOI": "10.1/b"}),
    ]
    enricher = _enricher(client, search_mode="identifiers")

    report = enricher.fetch_records(records, wait=True)

    assert report.summary() == "Found: 1, Not found: 0, Queued: 1"
    assert records[1].get_side_data().paper_id == "p2"


def test_empty_selection_does_nothing():
    enricher = _enricher(_StubClient({}))

    assert enricher.fetch_records([]).total == 0


def test_new_record_is_fetched_when_auto_fetch_is_enabled():
    client = _StubClient({"10.1/new": [_found()]})
    store = InMemoryRecordStore()
    enricher = _enricher(client, store)
    enricher.start(run_startup_update=False)

    record = store.add(LibraryRecord(key="N", fields={"DOI": "10.1/new"}))

    assert client.calls == ["10.1/new"]
    assert record.get_side_data().paper_id == "p1"
    enricher.shutdown()


def test_new_record_is_ignored_when_auto_fetch_is_disabled():
    client = _StubClient({"10.1/new": [_found()]})
    store = InMemoryRecordStore()
    enricher = _enricher(client, store, auto_fetch=False)
    enricher.start(run_startup_update=False)

    store.add(LibraryRecord(key="N", fields={"DOI": "10.1/new"}))

    assert client.calls == []
    enricher.shutdown()


def test_shutdown_unregisters_observer_and_clears_queue():
    client = _StubClient({"10.1/a": [RateLimited()]})
    store = InMemoryRecordStore()
    enricher = _enricher(client, store)
    enricher.start(run_startup_update=False)
    enricher.orchestrator.fetch_and_apply(LibraryRecord(key="A", fields={"DOI": "10.1/a"}))
    assert enricher.scheduler.has_pending()

    enricher.shutdown()
    store.add(LibraryRecord(key="N", fields={"DOI": "10.1/a"}))

    assert not enricher.scheduler.has_pending()
    assert client.calls == ["10.1/a"]


def test_update_library_respects_startup_preference():
    store = InMemoryRecordStore([LibraryRecord(key="A", fields={"DOI": "10.1/a"})])
    client = _StubClient({"10.1/a": [_found()]})

    assert _enricher(client, store, update_on_startup=False).update_library() is None
    assert client.calls == []

    report = _enricher(client, store, update_on_startup=False).update_library(force=True, wait=True)
    assert report.found == 1


def test_update_library_limits_to_scope():
    store = InMemoryRecordStore(
        [
            LibraryRecord(key="A", fields={"DOI": "10.1/a"}),
            LibraryRecord(key="B", fields={"DOI": "10.1/b"}, library="Group"),
        ]
    )
    client = _StubClient({})

    _enricher(client, store).update_library("Group", wait=True)

    assert client.calls == ["10.1/b"]


def test_update_library_requires_a_store():
    with pytest.raises(RuntimeError):
        _enricher(_StubClient({})).update_library(force=True)


def test_catalog_url_uses_stored_paper_id():
    record = LibraryRecord(key="A")
    enricher = _enricher(_StubClient({}))
    assert enricher.catalog_url(record) is None

    record.set_side_data(SideData(paper_id="abc"))
    assert enricher.catalog_url(record) == "https://www.semanticscholar.org/paper/abc"


def test_default_enricher_is_shared(monkeypatch):
    monkeypatch.setattr(citation_enrichment, "_default_enricher", None)
    monkeypatch.setattr(citation_enrichment, "_shutdown_callback_registered", True)

    first = citation_enrichment.get_default_enricher()

    assert citation_enrichment.get_default_enricher() is first
    assert first.scheduler is citation_enrichment.get_default_enricher().scheduler


@pytest.fixture
def stub_timer(monkeypatch):
    _StubTimer.created = []
    monkeypatch.setattr(api.threading, "Timer", _StubTimer)
    return _StubTimer


def test_library_update_uses_library_pacing_and_cooldown():
    store = InMemoryRecordStore(
        [
            LibraryRecord(key="A", fields={"DOI": "10.1/a"}),
            LibraryRecord(key="B", fields={"DOI": "10.1/b"}),
        ]
    )
    client = _StubClient({"10.1/a": [RateLimited()]})
    sleeps: List[float] = []

    report = _enricher(client, store, sleeps).update_library(force=True, wait=True)

    assert report.queued == 1
    assert sleeps == [3.0, 0.5]


def test_selection_fetch_keeps_selection_pacing():
    records = [
        LibraryRecord(key="A", fields={"DOI": "10.1/a"}),
        LibraryRecord(key="B", fields={"DOI": "10.1/b"}),
    ]
    sleeps: List[float] = []

    _enricher(_StubClient({"10.1/a": [RateLimited()]}), sleeps=sleeps).fetch_records(
        records, wait=True
    )

    assert sleeps == [0.2]


def test_start_schedules_the_library_update(stub_timer):
    store = InMemoryRecordStore([LibraryRecord(key="A", fields={"DOI": "10.1/a"})])
    client = _StubClient({"10.1/a": [_found()]})
    enricher = _enricher(client, store)

    enricher.start()

    assert [timer.interval for timer in stub_timer.created] == [3.0]
    assert stub_timer.created[0].daemon
    assert client.calls == ["10.1/a"]
    assert store.get("A").get_side_data().paper_id == "p1"
    enricher.shutdown()


def test_startup_update_is_skipped_when_disabled(stub_timer):
    store = InMemoryRecordStore([LibraryRecord(key="A", fields={"DOI": "10.1/a"})])
    client = _StubClient({})

    _enricher(client, store, update_on_startup=False).start()

    assert stub_timer.created == []
    assert client.calls == []


def test_repeated_start_schedules_one_cancellable_update(stub_timer):
    store = InMemoryRecordStore()
    enricher = _enricher(_StubClient({}), store)

    enricher.start()
    enricher.start()
    enricher.shutdown()

    assert len(stub_timer.created) == 1
    assert stub_timer.created[0].cancelled
