# src/score_relay/clients/offline.py

from __future__ import annotations

import random


class OfflineScoreClient:
    """
    Offline score source used for demos when no external API is configured.

    Returns a random "home:away" score (0-4 goals each), no network calls.
    """

    def __init__(self, *, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    async def fetch_score(self, entity_id: str) -> str:
        return f"{self._rng.randint(0, 4)}:{self._rng.randint(0, 4)}"
