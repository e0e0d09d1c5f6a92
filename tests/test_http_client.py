"""Tests for the httpx remote client and its retry policy."""

import json

import httpx
import pytest

from rbx_configs.config.models import Flag
from rbx_configs.errors import (
    NotFound,
    RateLimited,
    ServerRejected,
    Transport,
    Unauthorized,
)
from rbx_configs.remote.http import HttpRemoteConfigClient
from rbx_configs.remote.retry import RetryPolicy
from rbx_configs.sync.diff import Operation

UNIVERSE = 123
DRAFT_PATH = f"/universe-configs-web-api/v1/draft/universes/{UNIVERSE}"


def _client(handler, **retry) -> tuple[HttpRemoteConfigClient, list[float]]:
    waits: list[float] = []
    policy = RetryPolicy(sleep=waits.append, **retry)
    client = HttpRemoteConfigClient(
        cookie="secret",
        retry=policy,
        transport=httpx.MockTransport(handler),
    )
    return client, waits


def _entries(*entries) -> dict:
    return {"configVersion": "5", "entries": [{"entry": e} for e in entries]}


# --- Fetch ---


def test_fetch_parses_entries_and_sends_cookie():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["cookie"] = request.headers.get("cookie", "")
        return httpx.Response(
            200,
            json=_entries(
                {"key": "A", "description": "desc", "entryValue": [1, 2]},
                {"key": "B", "description": None, "entryValue": True},
            ),
        )

    client, _ = _client(handler)
    store = client.fetch(UNIVERSE)

    assert seen["path"] == f"/universe-configs-web-api/v1/configurations/universes/{UNIVERSE}/latest"
    assert ".ROBLOSECURITY=secret" in seen["cookie"]
    assert store["A"] == Flag.of([1, 2], "desc")
    assert store["B"] == Flag.of(True)


def test_fetch_status_mapping():
    for status, error in [(401, Unauthorized), (404, NotFound), (400, ServerRejected)]:
        client, _ = _client(lambda r, s=status: httpx.Response(s, json={"message": "nope"}))
        with pytest.raises(error):
            client.fetch(UNIVERSE)


# --- Retries ---


def test_rate_limit_retries_with_server_directed_wait():
    responses = [
        httpx.Response(429, headers={"retry-after": "2"}),
        httpx.Response(429, headers={"x-ratelimit-reset": "3"}),
        httpx.Response(200, json=_entries()),
    ]
    client, waits = _client(lambda r: responses.pop(0))

    assert len(client.fetch(UNIVERSE)) == 0
    assert waits == pytest.approx([2.075, 3.075])


def test_rate_limit_exhaustion_raises_rate_limited():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429)

    client, waits = _client(handler, max_rate_limit_retries=3)
    with pytest.raises(RateLimited):
        client.fetch(UNIVERSE)
    assert len(calls) == 4
    assert len(waits) == 3


def test_server_errors_back_off_exponentially():
    responses = [httpx.Response(503), httpx.Response(502), httpx.Response(200, json=_entries())]
    client, waits = _client(lambda r: responses.pop(0), backoff_base=0.5)

    client.fetch(UNIVERSE)
    assert waits == [0.5, 1.0]


def test_transport_errors_retry_then_raise():
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    client, waits = _client(handler, max_transient_retries=2)
    with pytest.raises(Transport):
        client.fetch(UNIVERSE)
    assert len(waits) == 2


def test_csrf_token_is_replayed_after_403():
    tokens = []

    def handler(request):
        tokens.append(request.headers.get("x-csrf-token"))
        if request.headers.get("x-csrf-token") != "tok":
            return httpx.Response(403, headers={"x-csrf-token": "tok"})
        return httpx.Response(200, json={"createConfigResult": {"isError": False}})

    client, _ = _client(handler)
    report = client.stage_batch(UNIVERSE, [Operation.create("A", Flag.of(1))])

    assert report.all_accepted
    assert tokens == [None, "tok"]


def test_etag_mismatch_waits_and_retries():
    responses = [
        httpx.Response(400, json={"message": "ETagMismatch"}),
        httpx.Response(200, json={"updateConfigResult": {"isError": False}}),
    ]
    client, waits = _client(lambda r: responses.pop(0), etag_wait=1.0)

    report = client.stage_batch(UNIVERSE, [Operation.update("A", Flag.of(1))])
    assert report.all_accepted
    assert waits == [1.0]


# --- Stage / discard / publish ---


def test_stage_batch_methods_bodies_and_rejections():
    requests = []

    def handler(request):
        requests.append((request.method, request.url.path, json.loads(request.content)))
        key = json.loads(request.content)["entry"]["key"]
        if key == "Bad":
            return httpx.Response(
                200,
                json={"createConfigResult": {"isError": True, "error": {"errorCode": "InvalidKey"}}},
            )
        if request.method == "POST":
            return httpx.Response(200, json={"createConfigResult": {"isError": False}})
        return httpx.Response(200, json={"updateConfigResult": {"isError": False}})

    client, _ = _client(handler)
    report = client.stage_batch(
        UNIVERSE,
        [
            Operation.create("New", Flag.of({"a": 1}, "d")),
            Operation.update("Old", Flag.of(2)),
            Operation.create("Bad", Flag.of(3)),
        ],
    )

    assert requests[0] == (
        "POST",
        DRAFT_PATH,
        {"entry": {"key": "New", "description": "d", "entryValue": {"a": 1}}},
    )
    assert requests[1][0] == "PUT"
    assert [op.name for op in report.accepted] == ["New", "Old"]
    assert report.rejected == {"Bad": "InvalidKey"}


def test_discard_reports_missing_draft():
    client, _ = _client(
        lambda r: httpx.Response(
            200, json={"discardStagedResult": {"isError": False, "data": {"draftHash": ""}}}
        )
    )
    assert client.discard_draft(UNIVERSE) is False

    client, _ = _client(
        lambda r: httpx.Response(
            200, json={"discardStagedResult": {"isError": False, "data": {"draftHash": "abc"}}}
        )
    )
    assert client.discard_draft(UNIVERSE) is True


def test_publish_sends_immediate_strategy():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={})

    client, _ = _client(handler)
    client.publish_draft(UNIVERSE)

    assert seen["path"] == f"{DRAFT_PATH}/publish"
    assert seen["body"]["deploymentStrategy"] == "DEPLOYMENT_STRATEGY_IMMEDIATE"


def test_publish_without_draft_is_not_found():
    client, _ = _client(lambda r: httpx.Response(400, json={"message": "DraftNotFound"}))
    with pytest.raises(NotFound):
        client.publish_draft(UNIVERSE)


def test_publish_is_not_retried_on_server_error():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(502, json={"message": "Bad Gateway"})

    client, waits = _client(handler)
    with pytest.raises(ServerRejected) as exc:
        client.publish_draft(UNIVERSE)
    assert exc.value.status_code == 502
    assert len(calls) == 1
    assert waits == []


def test_stage_batch_failure_reports_staged_and_unconfirmed():
    def handler(request):
        key = json.loads(request.content)["entry"]["key"]
        if key == "B":
            return httpx.Response(401, json={"message": "Unauthorized"})
        return httpx.Response(200, json={"createConfigResult": {"isError": False}})

    client, _ = _client(handler)
    ops = [Operation.create(name, Flag.of(1)) for name in ("A", "B", "C")]
    with pytest.raises(Unauthorized) as exc:
        client.stage_batch(UNIVERSE, ops)

    assert exc.value.staged == ("A",)
    assert exc.value.unconfirmed == ("B", "C")


# --- RetryPolicy ---


def test_retry_policy_waits():
    policy = RetryPolicy.no_wait()
    assert policy.rate_limit_wait({}) == pytest.approx(1.075)
    assert policy.rate_limit_wait({"retry-after": "bogus"}) == pytest.approx(1.075)
    assert policy.rate_limit_wait({"x-ratelimit-reset": "4"}) == pytest.approx(4.075)


def test_backoff_is_capped():
    responses = [httpx.Response(503) for _ in range(4)] + [httpx.Response(200, json=_entries())]
    client, waits = _client(lambda r: responses.pop(0), backoff_base=1.0, backoff_max=5.0)

    client.fetch(UNIVERSE)
    assert waits == [1.0, 2.0, 4.0, 5.0]


def test_retry_limits_are_counted_per_kind():
    responses = [
        httpx.Response(429, headers={"retry-after": "0"}),
        httpx.Response(503),
        httpx.Response(429, headers={"retry-after": "0"}),
        httpx.Response(200, json=_entries()),
    ]
    client, waits = _client(
        lambda r: responses.pop(0), max_rate_limit_retries=2, max_transient_retries=1
    )

    client.fetch(UNIVERSE)
    assert len(waits) == 3
