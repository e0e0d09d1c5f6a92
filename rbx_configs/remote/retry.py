"""Bounded retry policy for the remote client.

:class:`RetryPolicy` builds a ``tenacity.Retrying`` per request. The
client signals a retryable response by raising one of the
:class:`RetryableResponse` exceptions below; the policy decides how long
to wait and whether another attempt is allowed for that kind of failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, wait_exponential

logger = logging.getLogger(__name__)

# Statuses worth retrying with backoff besides 429
TRANSIENT_STATUSES = frozenset({408, 500, 502, 503, 504})


# ---------------------------------------------------------------------------
# Retryable outcomes raised inside the retry loop
# ---------------------------------------------------------------------------


class RetryableResponse(Exception):
    """A request outcome that may succeed if sent again."""

    def __init__(self, message: str, response: httpx.Response | None = None):
        super().__init__(message)
        self.response = response


class RateLimitedResponse(RetryableResponse):
    """HTTP 429."""


class TransientResponse(RetryableResponse):
    """HTTP 5xx / 408, or the request never got a response."""


class EtagMismatchResponse(RetryableResponse):
    """HTTP 400 ETagMismatch while a draft write propagates."""


class CsrfRefreshResponse(RetryableResponse):
    """HTTP 403 that handed out a new CSRF token."""


def _header_seconds(headers: Mapping[str, str], name: str) -> float | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return float(int(raw.strip()))
    except ValueError:
        return None


class _StopPerKind:
    """Stop once any kind of failure exceeds its own retry limit."""

    def __init__(self, limits: dict[type, int]):
        self.limits = limits
        self.counts: dict[type, int] = {}

    def __call__(self, retry_state: RetryCallState) -> bool:
        error = retry_state.outcome.exception()
        for kind, limit in self.limits.items():
            if isinstance(error, kind):
                self.counts[kind] = self.counts.get(kind, 0) + 1
                return self.counts[kind] > limit
        return True


@dataclass
class RetryPolicy:
    """How many times, and how long, to retry a remote request."""

    max_rate_limit_retries: int = 5
    max_transient_retries: int = 5
    max_etag_retries: int = 10
    max_csrf_retries: int = 1
    backoff_base: float = 0.5  # Seconds; doubles per attempt
    backoff_max: float = 30.0
    cushion: float = 0.075  # Added to server-directed waits
    etag_wait: float = 1.0
    sleep: Callable[[float], None] | None = field(default=None, repr=False)  # tenacity's by default

    def rate_limit_wait(self, headers: Mapping[str, str]) -> float:
        """Wait directed by the server: ``retry-after``, then ``x-ratelimit-reset``."""
        seconds = _header_seconds(headers, "retry-after")
        if seconds is None:
            seconds = _header_seconds(headers, "x-ratelimit-reset")
        if seconds is None:
            seconds = 1.0
        return seconds + self.cushion

    def backoff(self) -> wait_exponential:
        return wait_exponential(multiplier=self.backoff_base, max=self.backoff_max)

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception()
        if isinstance(error, RateLimitedResponse) and error.response is not None:
            return self.rate_limit_wait(error.response.headers)
        if isinstance(error, RateLimitedResponse):
            return self.rate_limit_wait({})
        if isinstance(error, EtagMismatchResponse):
            return self.etag_wait
        if isinstance(error, CsrfRefreshResponse):
            return 0.0
        return self.backoff()(retry_state)

    def retrying(self, transient: bool = True) -> Retrying:
        """Build the retry controller for one request.

        Args:
            transient: also retry 5xx and transport failures. Disable for
                requests that must not be sent twice.
        """
        limits = {
            RateLimitedResponse: self.max_rate_limit_retries,
            EtagMismatchResponse: self.max_etag_retries,
            CsrfRefreshResponse: self.max_csrf_retries,
            TransientResponse: self.max_transient_retries if transient else 0,
        }
        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep

        return Retrying(
            stop=_StopPerKind(limits),
            wait=self._wait,
            retry=retry_if_exception_type(RetryableResponse),
            before_sleep=_log_retry,
            reraise=True,
            **kwargs,
        )

    @classmethod
    def no_wait(cls, **overrides) -> RetryPolicy:
        """A policy that retries without sleeping (tests, dry runs)."""
        return cls(sleep=lambda _seconds: None, **overrides)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception()
    wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
    if isinstance(error, RateLimitedResponse):
        logger.warning(
            "Rate limited on attempt %d, retrying after %.2f seconds...",
            retry_state.attempt_number,
            wait,
        )
    elif isinstance(error, EtagMismatchResponse):
        logger.debug("Waiting for the draft etag to propagate...")
    elif isinstance(error, CsrfRefreshResponse):
        logger.debug("Retrying request with new CSRF token...")
    else:
        logger.warning("%s, retrying in %.1fs...", error, wait)
