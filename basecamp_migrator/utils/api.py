"""
API utilities for the Basecamp to Fizzy migration tool

Shared HTTP plumbing for both adapters: a token-bucket rate limiter, the
retry policy, a thin ``requests.Session`` wrapper that turns HTTP failures
into ``APIError`` and a parser for RFC 5988 ``Link`` headers.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

import requests

from basecamp_migrator.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_RATE_LIMIT,
    DEFAULT_RETRY_AFTER,
    DEFAULT_RETRY_DELAY,
    HTTP_NO_CONTENT,
    HTTP_RATE_LIMIT,
    HTTP_UNAUTHORIZED,
    REQUEST_TIMEOUT,
)
from basecamp_migrator.exceptions import APIError, AuthenticationError
from basecamp_migrator.utils.logging import (
    log_api_request,
    log_api_response,
    log_with_context,
)

T = TypeVar("T")

_LINK_PART_RE = re.compile(r'<([^>]+)>\s*;\s*rel="?([^";]+)"?')


class RateLimiter:
    """Token bucket limiter shared by every call made through one client.

    The bucket starts full with ``requests_per_second`` tokens and refills
    continuously in proportion to elapsed monotonic time. ``acquire`` blocks
    until a whole token is available and consumes it. The bucket is guarded
    by a lock so one limiter shared between threads throttles their
    aggregate rate.
    """

    def __init__(
        self,
        requests_per_second: float = DEFAULT_RATE_LIMIT,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.capacity = float(requests_per_second)
        self.refill_rate = float(requests_per_second)
        self._clock = clock or time.monotonic
        self._sleep = sleep
        self._tokens = self.capacity
        self._last_refill = self._clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def acquire(self) -> None:
        """Block until one token is available, then consume it."""
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait = (1 - self._tokens) / self.refill_rate
            # Sleep outside the lock so other callers can refill and check.
            (self._sleep or time.sleep)(wait)


def call_with_retry(
    fn: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_DELAY,
    max_delay: float = DEFAULT_MAX_RETRY_DELAY,
    default_retry_after: float = DEFAULT_RETRY_AFTER,
    sleep: Callable[[float], None] | None = None,
    **log_kwargs: Any,
) -> T:
    """Call ``fn`` with the migration retry policy.

    ``max_retries`` is the total number of attempts. Client errors (4xx other
    than 429) and ``AuthenticationError`` propagate immediately. A 429 waits
    for the server's ``Retry-After`` (or ``default_retry_after``). Other
    ``APIError`` failures back off exponentially:
    ``min(base_delay * 2 ** (attempt - 1), max_delay)``. When the attempts
    are exhausted the last error is re-raised.

    Args:
        fn: Zero-argument callable performing one attempt
        max_retries: Total attempts, including the first
        base_delay: First backoff delay in seconds
        max_delay: Ceiling for the backoff delay in seconds
        default_retry_after: Wait for a 429 without a Retry-After header
        sleep: Sleep function, defaults to ``time.sleep``
        **log_kwargs: Context added to retry log records

    Returns:
        Whatever ``fn`` returns on its first successful attempt
    """
    attempts = max(1, max_retries)
    log_kwargs.setdefault("component", "http")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except AuthenticationError:
            raise
        except APIError as e:
            if not e.retryable:
                log_with_context(
                    logging.WARNING,
                    f"Client error ({e.status_code}) not retried: {e}",
                    **log_kwargs,
                )
                raise

            if attempt >= attempts:
                log_with_context(
                    logging.ERROR,
                    f"Max retries reached. Last error: {e}",
                    **log_kwargs,
                )
                raise

            if e.status_code == HTTP_RATE_LIMIT:
                delay = (
                    e.retry_after if e.retry_after is not None else default_retry_after
                )
                log_with_context(
                    logging.WARNING,
                    f"Rate limited, waiting {delay:.1f} seconds (attempt {attempt}/{attempts})",
                    **log_kwargs,
                )
            else:
                delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                log_with_context(
                    logging.WARNING,
                    f"Request failed ({e.status_code or 'network'}): {e}. "
                    f"Retrying in {delay:.1f} seconds (attempt {attempt}/{attempts})",
                    **log_kwargs,
                )
            (sleep or time.sleep)(delay)

    raise RuntimeError("Exited retry loop unexpectedly.")


def parse_link_header(header: str | None) -> dict[str, str]:
    """Parse a ``Link`` header into a ``{rel: url}`` dict.

    >>> parse_link_header('<https://x/p?page=2>; rel="next"')
    {'next': 'https://x/p?page=2'}
    """
    if not header:
        return {}
    links: dict[str, str] = {}
    for part in header.split(","):
        match = _LINK_PART_RE.search(part)
        if match:
            url, rel = match.groups()
            for name in rel.split():
                links[name] = url
    return links


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class ApiClient:
    """One authenticated, rate-limited HTTP client for a single API.

    Every request acquires a token from the client's own ``RateLimiter`` and
    goes through ``call_with_retry``. Non-2xx responses are raised as
    ``APIError`` (``AuthenticationError`` for 401) carrying the status code
    and decoded body; transport failures are raised as ``APIError`` with
    ``status_code=None`` so the retry policy treats them as retryable.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
        headers: dict[str, str] | None = None,
        retry_config: dict[str, Any] | None = None,
        timeout: float = REQUEST_TIMEOUT,
        name: str = "api",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.rate_limiter = rate_limiter or RateLimiter()
        self.session = session or requests.Session()
        self.retry_config = retry_config or {}
        self.timeout = timeout
        self.name = name
        self.session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        if headers:
            self.session.headers.update(headers)

    def set_access_token(self, access_token: str) -> None:
        self.access_token = access_token

    def url_for(self, path: str) -> str:
        """Resolve ``path`` against the base URL; absolute URLs pass through."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    # -- Requests ------------------------------------------------------------

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> requests.Response:
        """Send one request with rate limiting and, by default, retries.

        Args:
            method: HTTP method
            path: Path relative to ``base_url`` or an absolute URL
            params: Query string parameters
            json: JSON request body
            retry: When False, make exactly one attempt

        Returns:
            The successful ``requests.Response``
        """
        if not retry:
            return self._send(method, path, params, json)
        return call_with_retry(
            lambda: self._send(method, path, params, json),
            max_retries=self.retry_config.get("max_retries", DEFAULT_MAX_RETRIES),
            base_delay=self.retry_config.get("retry_delay", DEFAULT_RETRY_DELAY),
            max_delay=self.retry_config.get("max_retry_delay", DEFAULT_MAX_RETRY_DELAY),
            default_retry_after=self.retry_config.get(
                "default_retry_after", DEFAULT_RETRY_AFTER
            ),
            api=self.name,
        )

    def get(self, path: str, params: dict[str, Any] | None = None) -> requests.Response:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: dict[str, Any] | None = None) -> requests.Response:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: dict[str, Any] | None = None) -> requests.Response:
        return self.request("PUT", path, json=json)

    def delete(self, path: str) -> requests.Response:
        return self.request("DELETE", path)

    def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return decode_json(self.get(path, params=params))

    # -- Internals -----------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
    ) -> requests.Response:
        url = self.url_for(path)
        self.rate_limiter.acquire()
        log_api_request(method, url, json, api=self.name)

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise APIError(f"{method} {url} failed: {e}") from e

        body = decode_json(response)
        log_api_response(response.status_code, url, body, api=self.name)

        if response.ok:
            return response

        message = f"{method} {url} returned {response.status_code}"
        detail = _error_detail(body)
        if detail:
            message = f"{message}: {detail}"

        if response.status_code == HTTP_UNAUTHORIZED:
            raise AuthenticationError(message)
        raise APIError(
            message,
            status_code=response.status_code,
            response=body,
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )


def decode_json(response: requests.Response) -> Any:
    """Decode a response body as JSON, returning None for empty or non-JSON bodies."""
    if response.status_code == HTTP_NO_CONTENT or not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _error_detail(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("error", "message", "errors"):
            if body.get(key):
                return str(body[key])
    return ""
