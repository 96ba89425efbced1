# tests/test_score_client.py

from __future__ import annotations

import httpx
import pytest

from score_relay.clients.offline import OfflineScoreClient
from score_relay.clients.score_client import HttpScoreClient
from score_relay.core.errors import FetchTransientError


def _client(handler, **kw) -> tuple[HttpScoreClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request, len(seen))

    client = HttpScoreClient(
        "http://scores.test/",
        initial_backoff_s=0.0,
        transport=httpx.MockTransport(recording),
        **kw,
    )
    return client, seen


@pytest.mark.asyncio
async def test_fetch_score_success() -> None:
    client, seen = _client(lambda req, n: httpx.Response(200, json={"eventId": "e1", "currentScore": "2:1"}))
    try:
        assert await client.fetch_score("e1") == "2:1"
    finally:
        await client.aclose()

    assert len(seen) == 1
    assert seen[0].url.path == "/events/e1"


@pytest.mark.asyncio
async def test_entity_id_is_a_single_path_segment() -> None:
    client, seen = _client(lambda req, n: httpx.Response(200, json={"eventId": "x", "currentScore": "1:1"}))
    try:
        assert await client.fetch_score("a/b?c#d") == "1:1"
    finally:
        await client.aclose()

    assert seen[0].url.raw_path == b"/events/a%2Fb%3Fc%23d"
    assert seen[0].url.query == b""


@pytest.mark.asyncio
async def test_retries_on_5xx_then_succeeds() -> None:
    def handler(req: httpx.Request, n: int) -> httpx.Response:
        if n == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"eventId": "e1", "currentScore": "0:0"})

    client, seen = _client(handler)
    try:
        assert await client.fetch_score("e1") == "0:0"
    finally:
        await client.aclose()
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_retries_on_transport_error_until_exhausted() -> None:
    def handler(req: httpx.Request, n: int) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=req)

    client, seen = _client(handler, max_attempts=3)
    try:
        with pytest.raises(FetchTransientError) as ei:
            await client.fetch_score("e1")
    finally:
        await client.aclose()

    assert len(seen) == 3
    assert ei.value.permanent is False
    assert ei.value.entity_id == "e1"
    assert "ConnectError" in str(ei.value)


@pytest.mark.asyncio
async def test_not_found_is_not_retried() -> None:
    client, seen = _client(lambda req, n: httpx.Response(404, text="no such event"))
    try:
        with pytest.raises(FetchTransientError) as ei:
            await client.fetch_score("missing")
    finally:
        await client.aclose()

    assert len(seen) == 1
    assert ei.value.permanent is True
    assert "404" in str(ei.value)


@pytest.mark.asyncio
async def test_missing_score_field_fails() -> None:
    client, seen = _client(lambda req, n: httpx.Response(200, json={"eventId": "e1"}))
    try:
        with pytest.raises(FetchTransientError):
            await client.fetch_score("e1")
    finally:
        await client.aclose()
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_invalid_json_fails() -> None:
    client, _ = _client(lambda req, n: httpx.Response(200, text="<html>"))
    try:
        with pytest.raises(FetchTransientError):
            await client.fetch_score("e1")
    finally:
        await client.aclose()


def test_blank_base_url_is_rejected() -> None:
    with pytest.raises(RuntimeError):
        HttpScoreClient("  ")


def test_backoff_is_capped() -> None:
    client = HttpScoreClient("http://scores.test", initial_backoff_s=0.1, max_backoff_s=0.3)
    assert client._backoff_s(1) == pytest.approx(0.1)
    assert client._backoff_s(2) == pytest.approx(0.2)
    assert client._backoff_s(3) == pytest.approx(0.3)
    assert client._backoff_s(10) == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_offline_client_returns_score_strings() -> None:
    client = OfflineScoreClient(seed=7)
    score = await client.fetch_score("e1")
    home, away = score.split(":")
    assert 0 <= int(home) <= 4
    assert 0 <= int(away) <= 4
