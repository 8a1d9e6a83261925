"""Tests for single-request transport and outcome classification."""

import asyncio
import json

import httpx
import pytest

from homeguard.peer.requests import PeerRequest
from homeguard.peer.transport import (
    AUTH_REJECTED,
    BAD_STATUS,
    MALFORMED_BODY,
    InvalidResponse,
    PeerUnreachable,
    Success,
    TransportClient,
)

JSON_REQUEST = PeerRequest("GET", "sensor", {"token": "t", "code": "1"}, expect_json=True)
PLAIN_REQUEST = PeerRequest("GET", "ping", {"token": "t", "code": "1"})


def _transport(handler) -> TransportClient:
    return TransportClient("http://peer.test", timeout=1.0, transport=httpx.MockTransport(handler))


class TestClassification:
    @pytest.mark.asyncio
    async def test_json_success(self):
        async with _transport(lambda r: httpx.Response(200, json={"temperature": 21})) as t:
            outcome = await t.execute(JSON_REQUEST)
        assert outcome == Success(payload={"temperature": 21}, status_code=200)
        assert outcome.ok

    @pytest.mark.asyncio
    async def test_plain_success_ignores_body(self):
        async with _transport(lambda r: httpx.Response(200, text="pong")) as t:
            outcome = await t.execute(PLAIN_REQUEST)
        assert isinstance(outcome, Success)
        assert outcome.payload is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_rejection(self, status):
        async with _transport(lambda r: httpx.Response(status, text="nope")) as t:
            outcome = await t.execute(JSON_REQUEST)
        assert isinstance(outcome, InvalidResponse)
        assert outcome.reason == AUTH_REJECTED
        assert outcome.auth_rejected
        assert outcome.status_code == status

    @pytest.mark.asyncio
    async def test_non_200_is_invalid(self):
        async with _transport(lambda r: httpx.Response(500, text="boom")) as t:
            outcome = await t.execute(PLAIN_REQUEST)
        assert outcome == InvalidResponse(BAD_STATUS, 500, "boom")
        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        async with _transport(lambda r: httpx.Response(200, text="<html>")) as t:
            outcome = await t.execute(JSON_REQUEST)
        assert isinstance(outcome, InvalidResponse)
        assert outcome.reason == MALFORMED_BODY

    @pytest.mark.asyncio
    async def test_connection_refused_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _transport(handler) as t:
            outcome = await t.execute(JSON_REQUEST)
        assert isinstance(outcome, PeerUnreachable)
        assert "ConnectError" in outcome.reason

    @pytest.mark.asyncio
    async def test_httpx_timeout_is_unreachable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with _transport(handler) as t:
            outcome = await t.execute(JSON_REQUEST)
        assert outcome == PeerUnreachable("timeout")

    @pytest.mark.asyncio
    async def test_overall_timeout_bounds_slow_peer(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        t = TransportClient(
            "http://peer.test", timeout=0.05, transport=httpx.MockTransport(handler)
        )
        async with t:
            outcome = await t.execute(JSON_REQUEST)
        assert outcome == PeerUnreachable("timeout")


class TestRequestShape:
    @pytest.mark.asyncio
    async def test_sends_path_params_and_body(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        request = PeerRequest("POST", "add_rule", {"token": "t", "code": "1"}, json={"uid": "A"})
        async with _transport(handler) as t:
            await t.execute(request)

        assert len(seen) == 1
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/add_rule"
        assert seen[0].url.params["token"] == "t"
        assert json.loads(seen[0].content) == {"uid": "A"}

    @pytest.mark.asyncio
    async def test_never_retries_internally(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        async with _transport(handler) as t:
            await t.execute(JSON_REQUEST)
        assert len(calls) == 1

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError, match="timeout"):
            TransportClient("http://peer.test", timeout=0)
