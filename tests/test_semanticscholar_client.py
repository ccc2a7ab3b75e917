from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import pytest
import requests
import responses

from citation_enrichment.core.models import Found, IdentifierKind, NotFound, RateLimited
from citation_enrichment.providers.clients.semanticscholar import (
    SemanticScholarClient,
    build_fields_param,
)

API = "https://api.semanticscholar.org/graph/v1"
PAPER_ID = "649def34f8be52c8b66281af98ae884c09aef38b"


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(sleeps):
    return SemanticScholarClient(session=requests.Session(), max_attempts=1, sleep=sleeps.append)


def _query(call) -> dict:
    return parse_qs(urlparse(call.request.url).query)


def test_fields_param_always_includes_identity_and_count():
    assert build_fields_param(lambda name: False) == "paperId,citationCount"

    fields = build_fields_param(lambda name: name in {"DOI", "arXivId", "venue"})
    assert fields.split(",") == ["paperId", "citationCount", "externalIds", "venue", "journal"]


@responses.activate
def test_lookup_by_doi_returns_found_result(client):
    responses.add(
        responses.GET,
        f"{API}/paper/DOI:10.1000%2Fxyz",
        json={
            "paperId": PAPER_ID,
            "citationCount": 42,
            "externalIds": {"DOI": "10.1000/xyz", "ArXiv": "2106.00001"},
            "journal": {"name": "Journal of Examples"},
            "venue": "JEx",
        },
        status=200,
    )

    outcome = client.lookup_by_identifier(IdentifierKind.DOI, "10.1000/xyz", "paperId,citationCount")

    assert isinstance(outcome, Found)
    assert outcome.result.paper_id == PAPER_ID
    assert outcome.result.citation_count == 42
    assert outcome.result.doi == "10.1000/xyz"
    assert outcome.result.arxiv_id == "2106.00001"
    assert outcome.result.venue == "Journal of Examples"
    assert _query(responses.calls[0]) == {"fields": ["paperId,citationCount"]}


@responses.activate
def test_rate_limited_lookup_is_classified_with_retry_after(client):
    responses.add(
        responses.GET,
        f"{API}/paper/ARXIV:2106.00001",
        status=429,
        headers={"Retry-After": "3"},
    )

    outcome = client.lookup_by_identifier(IdentifierKind.ARXIV, "2106.00001", "paperId")

    assert outcome == RateLimited(retry_after=3.0)
    assert len(responses.calls) == 1


@responses.activate
def test_http_failures_are_reported_as_not_found(client):
    responses.add(responses.GET, f"{API}/paper/PMID:111", status=404)
    responses.add(responses.GET, f"{API}/paper/PMID:222", status=500)
    responses.add(responses.GET, f"{API}/paper/PMID:333", body="not json", status=200)

    assert client.lookup_by_identifier(IdentifierKind.PMID, "111", "paperId") == NotFound(
        reason="http 404"
    )
    assert client.lookup_by_identifier(IdentifierKind.PMID, "222", "paperId") == NotFound(
        reason="http 500"
    )
    assert client.lookup_by_identifier(IdentifierKind.PMID, "333", "paperId") == NotFound(
        reason="invalid json"
    )


@responses.activate
def test_transport_failure_is_reported_as_not_found(client):
    responses.add(
        responses.GET,
        f"{API}/paper/{PAPER_ID}",
        body=requests.ConnectionError("connection reset"),
    )

    outcome = client.lookup_by_identifier(IdentifierKind.CATALOG_ID, PAPER_ID, "paperId")

    assert outcome == NotFound(reason="transport")


@responses.activate
def test_api_key_is_sent_when_configured():
    client = SemanticScholarClient(session=requests.Session(), api_key="secret", max_attempts=1)
    responses.add(responses.GET, f"{API}/paper/{PAPER_ID}", json={"paperId": PAPER_ID})

    client.lookup_by_identifier(IdentifierKind.CATALOG_ID, PAPER_ID, "paperId")

    assert responses.calls[0].request.headers["x-api-key"] == "secret"


@responses.activate
def test_title_search_requires_exact_normalized_match(client):
    responses.add(
        responses.GET,
        f"{API}/paper/search",
        json={
            "data": [
                {"paperId": "other", "title": "Deep Learning for Vision"},
                {"paperId": PAPER_ID, "title": "Deep learning", "citationCount": 7},
            ]
        },
    )

    outcome = client.search_by_title("Deep Learning!", "paperId,citationCount")

    assert isinstance(outcome, Found)
    assert outcome.result.paper_id == PAPER_ID
    params = _query(responses.calls[0])
    assert params["query"] == ["Deep Learning!"]
    assert params["limit"] == ["5"]
    assert params["fields"] == ["paperId,citationCount,title"]


@responses.activate
def test_title_search_without_exact_match_is_not_found(client):
    responses.add(
        responses.GET,
        f"{API}/paper/search",
        json={"data": [{"paperId": "other", "title": "Deep Learning for Vision"}]},
    )

    assert isinstance(client.search_by_title("Deep Learning", "paperId"), NotFound)


def test_blank_title_does_not_hit_the_network(client):
    assert client.search_by_title("  !! ", "paperId") == NotFound(reason="empty title")


def _echo_batch(request):
    ids = json.loads(request.body)["ids"]
    return 200, {}, json.dumps([{"paperId": paper_id, "citationCount": 1} for paper_id in ids])


@responses.activate
def test_batch_lookup_splits_into_chunks_of_five_hundred(client, sleeps):
    responses.add_callback(
        responses.POST,
        f"{API}/paper/batch",
        callback=_echo_batch,
        content_type="application/json",
    )
    ids = [f"{index:040x}" for index in range(600)]

    outcomes = client.batch_lookup(ids, "paperId,citationCount")

    assert len(responses.calls) == 2
    sizes = [len(json.loads(call.request.body)["ids"]) for call in responses.calls]
    assert sizes == [500, 100]
    assert [outcome.result.paper_id for outcome in outcomes] == ids
    assert sleeps == [0.2]


@responses.activate
def test_batch_lookup_stops_at_rate_limit_and_keeps_earlier_results(sleeps):
    client = SemanticScholarClient(
        session=requests.Session(), batch_size=2, max_attempts=1, sleep=sleeps.append
    )
    responses.add(
        responses.POST,
        f"{API}/paper/batch",
        json=[{"paperId": "a"}, None],
    )
    responses.add(responses.POST, f"{API}/paper/batch", status=429)

    outcomes = client.batch_lookup(["a", "b", "c", "d", "e"], "paperId")

    assert len(responses.calls) == 2
    assert isinstance(outcomes[0], Found)
    assert outcomes[1] == NotFound()
    assert outcomes[2:] == [RateLimited()] * 3


@responses.activate
def test_failed_batch_chunk_marks_only_that_chunk_not_found(sleeps):
    client = SemanticScholarClient(
        session=requests.Session(), batch_size=2, max_attempts=1, sleep=sleeps.append
    )
    responses.add(responses.POST, f"{API}/paper/batch", status=500)
    responses.add(responses.POST, f"{API}/paper/batch", json=[{"paperId": "c"}])

    outcomes = client.batch_lookup(["a", "b", "c"], "paperId")

    assert outcomes[:2] == [NotFound(reason="http 500")] * 2
    assert isinstance(outcomes[2], Found)
    assert sleeps == [0.2]


def test_empty_batch_makes_no_request(client):
    assert client.batch_lookup([], "paperId") == []


@responses.activate
def test_transport_failure_mentioning_429_in_the_url_is_not_a_rate_limit(client):
    responses.add(
        responses.GET,
        f"{API}/paper/DOI:10.1145%2F3429",
        body=requests.ConnectionError(f"Connection refused: {API}/paper/DOI:10.1145%2F3429"),
    )

    outcome = client.lookup_by_identifier(IdentifierKind.DOI, "10.1145/3429", "paperId")

    assert outcome == NotFound(reason="transport")
