# src/score_relay/clients/score_client.py

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from ..core.errors import FetchTransientError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _make_timeout_obj(connect_s: float, read_s: float) -> httpx.Timeout:
    return httpx.Timeout(
        connect=connect_s,
        read=read_s,
        write=read_s,
        pool=connect_s,
    )


class HttpScoreClient:
    """
    Score source over HTTP: GET {base_url}/events/{entity_id} -> {"eventId", "currentScore"}.

    Retry policy (inside one fetch_score call):
    - transport errors (connect/read timeouts, resets) and 429/5xx -> retry
    - other non-2xx, invalid JSON, missing currentScore -> fail immediately
    - exponential backoff: initial, x multiplier, capped at max_backoff_s
    Once attempts are exhausted a FetchTransientError is raised.
    """

    def __init__(
        self,
        base_url: str,
        *,
        connect_timeout_s: float = 1.0,
        read_timeout_s: float = 2.0,
        max_attempts: int = 3,
        initial_backoff_s: float = 0.1,
        backoff_multiplier: float = 2.0,
        max_backoff_s: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base_url = (base_url or "").strip().rstrip("/")
        if not base_url:
            raise RuntimeError("Score API base URL is not set. Set RELAY_SCORE_API_BASE_URL in your .env.")

        self._base_url = base_url
        self._max_attempts = max(1, int(max_attempts))
        self._initial_backoff_s = float(initial_backoff_s)
        self._backoff_multiplier = float(backoff_multiplier)
        self._max_backoff_s = float(max_backoff_s)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=_make_timeout_obj(connect_timeout_s, read_timeout_s),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _backoff_s(self, attempt: int) -> float:
        delay = self._initial_backoff_s * (self._backoff_multiplier ** (attempt - 1))
        return min(self._max_backoff_s, delay)

    async def fetch_score(self, entity_id: str) -> str:
        attempt = 1
        while True:
            try:
                return await self._fetch_once(entity_id)
            except FetchTransientError as e:
                if e.permanent or attempt >= self._max_attempts:
                    raise
                delay = self._backoff_s(attempt)
                logger.info(
                    "Score fetch failed for %s (attempt %d/%d): %s; retrying in %.2fs",
                    entity_id,
                    attempt,
                    self._max_attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _fetch_once(self, entity_id: str) -> str:
        url = f"/events/{quote(entity_id, safe='')}"
        logger.debug("Fetching score for %s from %s%s", entity_id, self._base_url, url)

        try:
            resp = await self._client.get(url)
        except httpx.TransportError as e:
            raise FetchTransientError(
                entity_id,
                f"Error calling score API for event {entity_id}: {e.__class__.__name__}: {e}",
            ) from e

        if resp.status_code in _RETRYABLE_STATUS:
            raise FetchTransientError(
                entity_id,
                f"Score API returned {resp.status_code} for event {entity_id}",
            )

        if not resp.is_success:
            body = resp.text[:200]
            raise FetchTransientError(
                entity_id,
                f"Score API returned {resp.status_code} for event {entity_id}: {body}",
                permanent=True,
            )

        try:
            data: Any = resp.json()
        except ValueError as e:
            raise FetchTransientError(
                entity_id,
                f"Invalid JSON from score API for event {entity_id}",
                permanent=True,
            ) from e

        score = data.get("currentScore") if isinstance(data, dict) else None
        if score is None or str(score).strip() == "":
            raise FetchTransientError(
                entity_id,
                f"Invalid response body from score API for event {entity_id}",
                permanent=True,
            )

        logger.debug("Fetched score for %s: %s", entity_id, score)
        return str(score)
