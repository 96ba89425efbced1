# src/score_relay/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the score source, the message bus and storage swappable and makes
testing easier.
"""

import sqlite3
from contextlib import AbstractContextManager
from typing import Any, Protocol


class ScoreFetcher(Protocol):
    """
    Remote score source for one entity.

    Implementations apply their own bounded retry policy and raise
    FetchTransientError once it is exhausted.
    """

    async def fetch_score(self, entity_id: str) -> str: ...


class ScorePublisher(Protocol):
    """
    Message bus sink.

    publish() returns once delivery is confirmed, or raises PublishTransientError
    after the implementation's own retries/timeouts are exhausted.
    """

    async def publish(self, message: Any) -> None: ...


class TaskRepo(Protocol):
    """
    Durable task storage.

    Every finder/mutator accepts an optional `conn` so that several calls can
    share one atomic transaction opened with transaction().
    """

    def transaction(self) -> AbstractContextManager[sqlite3.Connection]: ...

    def find_by_id(self, task_id: int, *, conn: sqlite3.Connection | None = None) -> Any | None: ...
    def find_by_entity_id(self, entity_id: str, *, conn: sqlite3.Connection | None = None) -> Any | None: ...
    def save(self, task: Any, *, conn: sqlite3.Connection | None = None) -> Any: ...

    # Scheduler API
    def find_due_batch(
            self,
            status: Any,
            now_ts: float,
            limit: int,
            *,
            conn: sqlite3.Connection | None = None,
    ) -> list[Any]: ...
    def count_due(self, status: Any, now_ts: float, *, conn: sqlite3.Connection | None = None) -> int: ...
    def try_claim(self, task_id: int, now_ts: float, *, conn: sqlite3.Connection | None = None) -> bool: ...
    def find_stale_in_flight(self, threshold_ts: float, *, conn: sqlite3.Connection | None = None) -> list[Any]: ...

    # Diagnostics
    def count_tasks(self) -> int: ...
    def counts_by_status(self) -> dict[Any, int]: ...
    def list_tasks(self, *, limit: int = 20, status: Any | None = None) -> list[Any]: ...
