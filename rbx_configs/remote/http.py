"""HTTP client for the universe configuration web API.

Handles the three things the service does to clients:

1. CSRF tokens: any response may carry a fresh ``x-csrf-token``; a 403
   that hands out a new token is replayed once with it.
2. Draft ETag propagation: ``400 ETagMismatch`` right after a write
   clears up after a short wait.
3. Rate limiting: 429 responses are retried after the server-directed
   wait, up to :attr:`RetryPolicy.max_rate_limit_retries`.

5xx responses and transport failures are retried with exponential
backoff (publish excepted). The retry loop itself is the
``tenacity.Retrying`` built by :meth:`RetryPolicy.retrying`. Whatever
is still failing after that is raised as a :class:`RemoteError`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from rbx_configs import __version__
from rbx_configs.config.models import Flag
from rbx_configs.config.store import ConfigStore
from rbx_configs.errors import (
    MalformedConfig,
    NotFound,
    RateLimited,
    RemoteError,
    ServerRejected,
    Transport,
    Unauthorized,
)
from rbx_configs.remote.client import RemoteConfigClient, StageOutcome, StageReport
from rbx_configs.remote.retry import (
    TRANSIENT_STATUSES,
    CsrfRefreshResponse,
    EtagMismatchResponse,
    RateLimitedResponse,
    RetryableResponse,
    RetryPolicy,
    TransientResponse,
)
from rbx_configs.sync.diff import Operation, OperationKind

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://apis.roblox.com/universe-configs-web-api"
AUTH_COOKIE = ".ROBLOSECURITY"

DEFAULT_HEADERS = {
    "cache-control": "no-cache",
    "pragma": "no-cache",
    "referer": "https://create.roblox.com",
    "origin": "https://create.roblox.com",
    "user-agent": f"rbx-configs/{__version__}",
}


class HttpRemoteConfigClient(RemoteConfigClient):
    """:class:`RemoteConfigClient` backed by ``httpx``.

    Parameters
    ----------
    cookie : str
        Value of the ``.ROBLOSECURITY`` session cookie.
    base_url : str
        Root of the configuration web API.
    retry : RetryPolicy | None
        Retry limits and waits. Defaults to :class:`RetryPolicy`.
    transport : httpx.BaseTransport | None
        Custom transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        cookie: str,
        base_url: str = DEFAULT_BASE_URL,
        retry: RetryPolicy | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.retry = retry or RetryPolicy()
        self._csrf_token: str | None = None
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=DEFAULT_HEADERS,
            cookies={AUTH_COOKIE: cookie},
            timeout=timeout,
            transport=transport,
        )

    # -- RemoteConfigClient --------------------------------------------------

    def fetch(self, universe_id: int) -> ConfigStore:
        resp = self._send("GET", f"/v1/configurations/universes/{universe_id}/latest")
        self._raise_for_status(resp)
        body = self._json(resp)

        flags = {}
        for item in body.get("entries") or []:
            entry = item.get("entry") or {}
            key = entry.get("key")
            if not isinstance(key, str):
                raise ServerRejected(f"config entry without a key: {entry!r}")
            try:
                flags[key] = Flag.from_json(
                    key,
                    {"description": entry.get("description"), "value": entry.get("entryValue")},
                )
            except MalformedConfig as e:
                raise ServerRejected(f"unexpected remote entry: {e}") from e

        logger.debug("Fetched %d flag(s) (config version %s)", len(flags), body.get("configVersion"))
        return ConfigStore(flags)

    def stage_batch(self, universe_id: int, operations: list[Operation]) -> StageReport:
        """Stage each operation in turn.

        A 4xx on one entry is recorded as that entry's rejection. Any other
        remote error aborts the batch; it is raised with ``staged`` and
        ``unconfirmed`` set to the flag names on either side of the failure.
        """
        report = StageReport()
        path = f"/v1/draft/universes/{universe_id}"

        for index, op in enumerate(operations):
            try:
                report.outcomes.append(self._stage_one(path, op))
            except RemoteError as e:
                e.staged = tuple(done.name for done in report.accepted)
                e.unconfirmed = tuple(rest.name for rest in operations[index:])
                raise

        return report

    def _stage_one(self, path: str, op: Operation) -> StageOutcome:
        if op.kind == OperationKind.CREATE:
            method, result_key = "POST", "createConfigResult"
        else:
            method, result_key = "PUT", "updateConfigResult"

        logger.info("Uploading flag '%s' (%s)", op.name, op.kind.value)
        resp = self._send(method, path, json={"entry": _entry_body(op)})
        try:
            self._raise_for_status(resp)
        except ServerRejected as e:
            return StageOutcome(op, accepted=False, reason=e.details)

        result = self._json(resp).get(result_key) or {}
        if result.get("isError"):
            error = result.get("error") or {}
            reason = error.get("errorCode") or error.get("message") or "unknown error"
            logger.error("Failed to upload flag '%s': %s", op.name, reason)
            return StageOutcome(op, accepted=False, reason=reason)
        return StageOutcome(op, accepted=True)

    def discard_draft(self, universe_id: int) -> bool:
        resp = self._send("DELETE", f"/v1/draft/universes/{universe_id}")
        if resp.status_code == 404:
            return False
        self._raise_for_status(resp)

        result = self._json(resp).get("discardStagedResult") or {}
        if result.get("isError"):
            error = result.get("error") or {}
            raise ServerRejected(
                f"Failed to discard draft: {error.get('errorCode') or error.get('message')}",
                resp.status_code,
            )

        data = result.get("data")
        if data is not None and not data.get("draftHash"):
            return False
        return True

    def publish_draft(self, universe_id: int) -> None:
        # Not retried on 5xx: the first attempt may have been applied
        resp = self._send(
            "POST",
            f"/v1/draft/universes/{universe_id}/publish",
            json={"message": "", "deploymentStrategy": "DEPLOYMENT_STRATEGY_IMMEDIATE"},
            transient=False,
        )
        if "DraftNotFound" in resp.text:
            raise NotFound("Failed to publish draft: No draft is present")
        self._raise_for_status(resp)

    def close(self) -> None:
        self._http.close()

    # -- request loop --------------------------------------------------------

    def _send(
        self, method: str, path: str, json: Any = None, transient: bool = True
    ) -> httpx.Response:
        """Send a request under the retry policy.

        Returns the final response, which may still be an error status;
        raises RateLimited / Transport when those retries run out.
        """
        try:
            for attempt in self.retry.retrying(transient=transient):
                with attempt:
                    return self._attempt(method, path, json)
        except RateLimitedResponse as e:
            raise RateLimited(f"{method} {path} is still rate limited after retrying") from e
        except RetryableResponse as e:
            if e.response is None:
                raise Transport(f"{method} {path} failed: {e}") from e
            return e.response
        raise AssertionError("unreachable")

    def _attempt(self, method: str, path: str, json: Any) -> httpx.Response:
        headers = {"x-csrf-token": self._csrf_token} if self._csrf_token else {}
        try:
            resp = self._http.request(method, path, json=json, headers=headers)
        except httpx.TransportError as e:
            raise TransientResponse(f"Request error ({e})") from e

        status = resp.status_code
        if not resp.is_success:
            logger.debug("%s %s -> HTTP %d", method, path, status)

        new_token = resp.headers.get("x-csrf-token")
        token_changed = bool(new_token) and new_token != self._csrf_token
        if token_changed:
            self._csrf_token = new_token
            logger.debug("Updated CSRF token from response headers")

        if status == 403 and token_changed:
            raise CsrfRefreshResponse("CSRF token refreshed", resp)
        if status == 429:
            raise RateLimitedResponse(f"HTTP 429 on {method} {path}", resp)
        if status == 400 and _error_message(resp) == "ETagMismatch":
            raise EtagMismatchResponse("ETagMismatch", resp)
        if status in TRANSIENT_STATUSES:
            raise TransientResponse(f"HTTP {status} on {method} {path}", resp)
        return resp

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        status = resp.status_code
        if resp.is_success:
            return
        message = _error_message(resp) or resp.reason_phrase
        if status in (401, 403):
            raise Unauthorized(f"HTTP {status}: {message}. Check RBX_COOKIE.")
        if status == 404:
            raise NotFound(f"HTTP 404: {message}")
        if status == 429:
            raise RateLimited(f"HTTP 429: {message}")
        raise ServerRejected(message, status)

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        try:
            body = resp.json()
        except ValueError as e:
            raise ServerRejected(f"invalid JSON in response: {e}", resp.status_code) from e
        if not isinstance(body, dict):
            raise ServerRejected("unexpected response shape", resp.status_code)
        return body


def _entry_body(op: Operation) -> dict:
    return {
        "key": op.name,
        "description": op.flag.description,
        "entryValue": op.flag.value.to_json(),
    }


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or "")
    return ""
