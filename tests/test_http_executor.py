"""Tests de l'exécuteur d'appels sortants (timeout, retry borné, classification)."""

from __future__ import annotations

import httpx
import pytest

from proposalhub.core.constants import HTTP_NOT_FOUND, HTTP_OK, HTTP_SERVICE_UNAVAILABLE
from proposalhub.domain.errors import (
    PermanentServiceError,
    TransientServiceError,
    UnparsableResponseError,
)
from proposalhub.infra.http_clients import (
    ResilientExecutor,
    RetryPolicy,
    build_headers,
    parse_json,
    raise_for_service_status,
)

URL = "https://provider.test/v1/embeddings"


def _executor(handler, *, api_key: str | None = None, max_attempts: int = 3):
    sleeps: list[float] = []
    client = httpx.Client(transport=httpx.MockTransport(handler))
    executor = ResilientExecutor(
        "test",
        headers=build_headers(api_key),
        policy=RetryPolicy(max_attempts=max_attempts, timeout_s=1.0, retry_delay_s=0.5),
        client=client,
        sleep=sleeps.append,
    )
    return executor, sleeps


def test_503_exhausts_exact_attempt_budget():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(HTTP_SERVICE_UNAVAILABLE, text="busy")

    executor, sleeps = _executor(handler)
    with pytest.raises(TransientServiceError) as exc_info:
        executor.execute("POST", URL, json={"input": "x"})

    assert len(calls) == 3
    assert sleeps == [0.5, 0.5]
    assert exc_info.value.attempts == 3
    assert exc_info.value.status_code == HTTP_SERVICE_UNAVAILABLE


def test_404_is_returned_after_single_attempt():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(HTTP_NOT_FOUND, json={"message": "missing"})

    executor, sleeps = _executor(handler)
    resp = executor.execute("GET", URL)

    assert resp.status_code == HTTP_NOT_FOUND
    assert len(calls) == 1
    assert sleeps == []


def test_timeout_is_retried_then_succeeds():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("too slow", request=request)
        return httpx.Response(HTTP_OK, json={"ok": True})

    executor, sleeps = _executor(handler)
    resp = executor.execute("POST", URL, json={})

    assert resp.status_code == HTTP_OK
    assert len(calls) == 2
    assert sleeps == [0.5]


def test_network_error_exhaustion_has_no_status():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    executor, _ = _executor(handler, max_attempts=2)
    with pytest.raises(TransientServiceError) as exc_info:
        executor.execute("GET", URL)
    assert exc_info.value.status_code is None
    assert exc_info.value.attempts == 2


def test_per_call_attempt_override():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    executor, sleeps = _executor(handler)
    with pytest.raises(TransientServiceError):
        executor.execute("GET", URL, max_attempts=1)
    assert len(calls) == 1
    assert sleeps == []


def test_non_retryable_transport_error_is_permanent():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.UnsupportedProtocol("bad scheme", request=request)

    executor, _ = _executor(handler)
    with pytest.raises(PermanentServiceError):
        executor.execute("GET", URL)
    assert len(calls) == 1


def test_bearer_header_is_sent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(HTTP_OK, json={})

    executor, _ = _executor(handler, api_key="secret")
    executor.execute("GET", URL)
    assert seen["authorization"] == "Bearer secret"
    assert seen["content-type"] == "application/json"


def test_build_headers_without_key():
    assert "Authorization" not in build_headers(None)


def test_raise_for_service_status_and_parse_json():
    bad = httpx.Response(400, text="nope", request=httpx.Request("GET", URL))
    with pytest.raises(PermanentServiceError) as exc_info:
        raise_for_service_status(bad, "svc")
    assert exc_info.value.status_code == 400

    not_json = httpx.Response(HTTP_OK, text="<html>", request=httpx.Request("GET", URL))
    with pytest.raises(UnparsableResponseError):
        parse_json(not_json, "svc")


def test_retry_policy_from_settings():
    class _S:
        HTTP_MAX_ATTEMPTS = 0
        HTTP_TIMEOUT_S = 12
        HTTP_RETRY_DELAY_S = 0.25

    policy = RetryPolicy.from_settings(_S())
    assert policy.max_attempts == 1
    assert policy.timeout_s == 12.0
    assert policy.retry_delay_s == 0.25


def test_attempt_deadline_covers_whole_body():
    """Un corps qui arrive après l'échéance de la tentative compte comme un timeout."""
    calls = []
    ticks = iter(range(0, 1000, 10))

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(HTTP_OK, json={"data": "late"})

    executor = ResilientExecutor(
        "test",
        policy=RetryPolicy(max_attempts=2, timeout_s=5.0, retry_delay_s=0.0),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _s: None,
        clock=lambda: next(ticks),
    )
    with pytest.raises(TransientServiceError) as exc_info:
        executor.execute("GET", URL)

    assert len(calls) == 2
    assert exc_info.value.status_code is None
    assert "exceeded" in exc_info.value.message


def test_streamed_body_is_returned_intact():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(HTTP_OK, json={"embedding": [0.1, 0.2]})

    executor, _ = _executor(handler)
    resp = executor.execute("POST", URL, json={"input": "x"})
    assert resp.json() == {"embedding": [0.1, 0.2]}
