"""HTTP plumbing shared by catalog clients: retries, status mapping, errors."""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": "citation-enrichment",
    "Accept": "application/json",
}

# 429 is left to the retry scheduler.
RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})

DEFAULT_MAX_ATTEMPTS = 3
WAIT_MULTIPLIER = 0.5
WAIT_MIN_SECONDS = 0.5
WAIT_MAX_SECONDS = 8.0
BODY_EXCERPT_LIMIT = 200


class ClientError(Exception):
    """Base class for catalog request failures."""


class NotFoundError(ClientError):
    """The catalog has no entry for the requested identifier (HTTP 404)."""


class RateLimitedError(ClientError):
    """The catalog asked us to slow down (HTTP 429)."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RequestRejectedError(ClientError):
    """The catalog refused the request itself (4xx other than 404 and 429)."""

    def __init__(self, status: int, message: str, body_excerpt: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.body_excerpt = body_excerpt


class UnauthorizedError(RequestRejectedError):
    """HTTP 401, usually an invalid API key."""


class ForbiddenError(RequestRejectedError):
    """HTTP 403."""


class UpstreamError(ClientError):
    """The catalog failed to answer, even after transport-level retries."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class TransportError(UpstreamError):
    """No HTTP response at all (connection reset, DNS failure, timeout)."""


class RetryableResponseError(Exception):
    """Carries a 5xx response through the tenacity retry loop."""

    def __init__(self, response: requests.Response):
        super().__init__(f"Retryable status {response.status_code}")
        self.response = response


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait according to a ``Retry-After`` header, if it is usable.

    Both the delta-seconds and the HTTP-date forms are accepted; dates in the
    past yield ``0.0``.
    """

    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max((retry_at - datetime.now(timezone.utc)).total_seconds(), 0.0)


_exponential_wait = wait_exponential(
    multiplier=WAIT_MULTIPLIER, min=WAIT_MIN_SECONDS, max=WAIT_MAX_SECONDS
)


def _jittered_wait(retry_state: RetryCallState) -> float:
    base = _exponential_wait(retry_state)
    return random.uniform(base * 0.5, min(base * 1.5, WAIT_MAX_SECONDS))


def _body_excerpt(response: requests.Response) -> Optional[str]:
    try:
        text = response.text
    except Exception:
        return None
    excerpt = " ".join((text or "").split())[:BODY_EXCERPT_LIMIT]
    return excerpt or None


class BaseHttpClient:
    """Base class for catalog clients.

    Connection failures and 5xx responses are retried up to ``max_attempts``
    times with jittered exponential waits. Whatever remains is mapped onto the
    :class:`ClientError` hierarchy. A 429 is raised as
    :class:`RateLimitedError` on first sight, carrying any ``Retry-After``
    hint, because rate limits are paced by the caller's retry queue.
    """

    BASE_URL = ""

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        debug_logging: bool = False,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        for key, value in DEFAULT_HEADERS.items():
            self.session.headers.setdefault(key, value)
        self.base_url = base_url or self.BASE_URL
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.debug_logging = debug_logging

    def _before_retry_sleep(self, retry_state: RetryCallState) -> None:
        if not self.debug_logging:
            return
        method, url = (tuple(retry_state.args) + ("?", "?"))[:2]
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.debug(
            "Retrying %s %s (attempt %s failed: %s)",
            str(method).upper(),
            url,
            retry_state.attempt_number,
            error,
        )

    def _send_once(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        response = self.session.request(method, url, **kwargs)
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetryableResponseError(response)
        return response

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=_jittered_wait,
            retry=retry_if_exception_type((requests.RequestException, RetryableResponseError)),
            before_sleep=self._before_retry_sleep,
        )
        return retrying(self._send_once, method, url, **kwargs)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        if self.debug_logging:
            logger.debug("HTTP %s %s", method.upper(), path)
        try:
            response = self._send(
                method,
                url,
                params=params,
                headers=headers,
                timeout=timeout or self.timeout,
                **kwargs,
            )
        except RetryableResponseError as exc:
            response = exc.response
        except requests.RequestException as exc:
            raise TransportError(f"Request failed: {exc}") from exc

        return self._handle_response(response)

    def _handle_response(self, response: requests.Response) -> requests.Response:
        status = response.status_code
        if status == 200:
            return response
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitedError("Rate limit exceeded (429)", retry_after=retry_after)
        if status == 404:
            raise NotFoundError("No catalog entry (404)")

        excerpt = _body_excerpt(response)
        detail = f": {excerpt}" if excerpt else ""
        if status in (401, 403):
            logger.warning("Catalog rejected the request with %s; check the API key", status)
            error_type = UnauthorizedError if status == 401 else ForbiddenError
            raise error_type(status, f"Access denied ({status}){detail}", body_excerpt=excerpt)
        if 400 <= status < 500:
            raise RequestRejectedError(
                status, f"Request rejected ({status}){detail}", body_excerpt=excerpt
            )
        raise UpstreamError(f"Catalog error ({status}){detail}", status=status)
