"""Semantic Scholar client for citation metadata lookups."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from citation_enrichment.core.identifiers import normalize_title, titles_match
from citation_enrichment.core.models import (
    CatalogResult,
    FetchOutcome,
    Found,
    IdentifierKind,
    NotFound,
    RateLimited,
)
from citation_enrichment.providers.clients.base import (
    BaseHttpClient,
    ClientError,
    NotFoundError,
    RateLimitedError,
    TransportError,
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 500
BATCH_PACING_DELAY = 0.2
SEARCH_LIMIT = 5
ALWAYS_FETCHED_FIELDS = ("paperId", "citationCount")

_PATH_PREFIXES = {
    IdentifierKind.DOI: "DOI:",
    IdentifierKind.ARXIV: "ARXIV:",
    IdentifierKind.PMID: "PMID:",
    IdentifierKind.CATALOG_ID: "",
}

# Preference field name -> API attributes it requires.
_FIELD_ATTRIBUTES: Dict[str, Sequence[str]] = {
    "influentialCitationCount": ("influentialCitationCount",),
    "referenceCount": ("referenceCount",),
    "DOI": ("externalIds",),
    "arXivId": ("externalIds",),
    "abstract": ("abstract",),
    "publicationDate": ("publicationDate",),
    "venue": ("venue", "journal"),
    "openAccessPdf": ("openAccessPdf",),
    "fieldsOfStudy": ("fieldsOfStudy",),
}


def build_fields_param(should_fetch: Callable[[str], bool]) -> str:
    """Build the comma-separated ``fields`` parameter from field preferences."""

    fields: List[str] = list(ALWAYS_FETCHED_FIELDS)
    for name, attributes in _FIELD_ATTRIBUTES.items():
        if should_fetch(name):
            fields.extend(attributes)
    return ",".join(dict.fromkeys(fields))


def _with_title(fields: str) -> str:
    parts = [part for part in fields.split(",") if part]
    if "title" not in parts:
        parts.append("title")
    return ",".join(parts)


def classify_error(exc: Exception) -> FetchOutcome:
    """Collapse a request failure into a non-success outcome.

    Only an explicit rate-limit signal is retryable; everything else is
    reported as ``NotFound`` with the reason kept for logging.
    """

    if isinstance(exc, RateLimitedError):
        return RateLimited(retry_after=exc.retry_after)
    if isinstance(exc, TransportError):
        return NotFound(reason="transport")
    if isinstance(exc, NotFoundError):
        return NotFound(reason="http 404")
    status = getattr(exc, "status", None)
    if status is not None:
        return NotFound(reason=f"http {status}")
    if isinstance(exc, ValueError):
        return NotFound(reason="invalid json")
    return NotFound(reason=type(exc).__name__)


class SemanticScholarClient(BaseHttpClient):
    """Classified lookups against the Semantic Scholar Graph API v1.

    Every public method returns a :data:`FetchOutcome` and never raises for
    HTTP, transport or payload failures.
    """

    BASE_URL = "https://api.semanticscholar.org/graph/v1"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        batch_timeout: float = 60.0,
        batch_size: int = BATCH_SIZE,
        batch_pacing_delay: float = BATCH_PACING_DELAY,
        max_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
        debug_logging: bool = False,
    ) -> None:
        super().__init__(
            session=session,
            base_url=base_url,
            timeout=timeout,
            max_attempts=max_attempts,
            debug_logging=debug_logging,
        )
        self.api_key = api_key
        self.batch_timeout = batch_timeout
        self.batch_size = max(1, min(batch_size, BATCH_SIZE))
        self.batch_pacing_delay = batch_pacing_delay
        self._sleep = sleep

    def _auth_headers(self) -> Optional[Dict[str, str]]:
        if not self.api_key:
            return None
        return {"x-api-key": self.api_key}

    def lookup_by_identifier(
        self, kind: IdentifierKind, value: str, fields: str
    ) -> FetchOutcome:
        if kind not in _PATH_PREFIXES:
            raise ValueError(f"Identifier kind {kind} has no direct lookup")

        logger.debug("Fetching by %s: %s", kind.value, value)
        path = f"/paper/{_PATH_PREFIXES[kind]}{quote(value.strip(), safe='')}"
        try:
            response = self._request(
                "GET", path, params={"fields": fields}, headers=self._auth_headers()
            )
            payload = response.json()
        except (ClientError, ValueError) as exc:
            outcome = classify_error(exc)
            self._log_failure(f"{kind.value} lookup", outcome, exc)
            return outcome

        if not isinstance(payload, dict) or not payload.get("paperId"):
            return NotFound(reason="empty payload")
        return Found(self._to_result(payload))

    def search_by_title(self, title: str, fields: str) -> FetchOutcome:
        if not normalize_title(title):
            return NotFound(reason="empty title")

        logger.debug("Fetching by title: %s", title)
        params = {"query": title, "fields": _with_title(fields), "limit": SEARCH_LIMIT}
        try:
            response = self._request(
                "GET", "/paper/search", params=params, headers=self._auth_headers()
            )
            payload = response.json()
        except (ClientError, ValueError) as exc:
            outcome = classify_error(exc)
            self._log_failure("title search", outcome, exc)
            return outcome

        candidates = payload.get("data") if isinstance(payload, dict) else None
        if not candidates:
            logger.debug("No results found for title: %s", title)
            return NotFound()

        for candidate in candidates:
            if not isinstance(candidate, dict) or not candidate.get("title"):
                continue
            if titles_match(candidate["title"], title):
                logger.debug("Exact title match found: %s", candidate.get("paperId"))
                return Found(self._to_result(candidate))

        logger.debug("No matching title found among %s results", len(candidates))
        return NotFound()

    def batch_lookup(self, ids: Sequence[str], fields: str) -> List[FetchOutcome]:
        """Look up catalog ids in chunks, returning outcomes aligned with ``ids``.

        A rate-limited chunk stops the run; its positions and those of every
        later chunk are reported as ``RateLimited`` while earlier results are
        kept.
        """

        outcomes: List[FetchOutcome] = []
        if not ids:
            return outcomes

        logger.info("Batch fetching %s papers", len(ids))
        for start in range(0, len(ids), self.batch_size):
            chunk = list(ids[start : start + self.batch_size])
            chunk_number = start // self.batch_size + 1
            try:
                response = self._request(
                    "POST",
                    "/paper/batch",
                    params={"fields": fields},
                    headers=self._auth_headers(),
                    json={"ids": chunk},
                    timeout=self.batch_timeout,
                )
                payload = response.json()
            except (ClientError, ValueError) as exc:
                outcome = classify_error(exc)
                self._log_failure(f"batch {chunk_number}", outcome, exc)
                if isinstance(outcome, RateLimited):
                    outcomes.extend([outcome] * (len(ids) - start))
                    return outcomes
                outcomes.extend([outcome] * len(chunk))
            else:
                chunk_outcomes = self._batch_outcomes(payload, len(chunk))
                found = sum(1 for outcome in chunk_outcomes if isinstance(outcome, Found))
                logger.info("Batch %s: got %s results", chunk_number, found)
                outcomes.extend(chunk_outcomes)

            if start + self.batch_size < len(ids):
                self._sleep(self.batch_pacing_delay)

        return outcomes

    def _batch_outcomes(self, payload: Any, expected: int) -> List[FetchOutcome]:
        if not isinstance(payload, list):
            return [NotFound(reason="invalid json")] * expected

        results: List[FetchOutcome] = []
        for item in payload[:expected]:
            if isinstance(item, dict) and item.get("paperId"):
                results.append(Found(self._to_result(item)))
            else:
                results.append(NotFound())
        results.extend([NotFound()] * (expected - len(results)))
        return results

    def _log_failure(self, what: str, outcome: FetchOutcome, exc: Exception) -> None:
        if isinstance(outcome, RateLimited):
            logger.warning(
                "Rate limited during %s (retry after %s)", what, outcome.retry_after or "unset"
            )
        else:
            logger.debug("%s failed (%s): %s", what, outcome.reason, exc)

    def _to_result(self, data: Dict[str, Any]) -> CatalogResult:
        external_ids = {
            str(key): str(value)
            for key, value in (data.get("externalIds") or {}).items()
            if value is not None
        }

        journal = data.get("journal")
        journal_name = journal.get("name") if isinstance(journal, dict) else None
        open_access = data.get("openAccessPdf")
        open_access_url = open_access.get("url") if isinstance(open_access, dict) else None

        return CatalogResult(
            paper_id=str(data.get("paperId") or ""),
            citation_count=data.get("citationCount"),
            influential_citation_count=data.get("influentialCitationCount"),
            reference_count=data.get("referenceCount"),
            external_ids=external_ids,
            abstract=data.get("abstract"),
            publication_date=data.get("publicationDate"),
            venue=journal_name or data.get("venue") or None,
            open_access_url=open_access_url or None,
            fields_of_study=[str(item) for item in data.get("fieldsOfStudy") or [] if item],
            title=data.get("title"),
        )
