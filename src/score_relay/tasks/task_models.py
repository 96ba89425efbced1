# src/score_relay/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

MAX_ERROR_LENGTH = 1000


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    inactive  -> not polled (next_due_at is NULL)
    active    -> eligible once next_due_at <= now
    in_flight -> claimed by a scheduler tick, waiting for an outcome report
    """

    INACTIVE = "inactive"
    ACTIVE = "active"
    IN_FLIGHT = "in_flight"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.INACTIVE
        try:
            return cls(raw)
        except ValueError:
            return cls.INACTIVE


@dataclass(slots=True)
class Task:
    id: int | None
    entity_id: str
    status: TaskStatus
    created_at: float
    updated_at: float

    next_due_at: float | None = None
    last_attempt_at: float | None = None
    execution_count: int = 0

    last_error: str | None = None
    last_error_at: float | None = None


@dataclass(slots=True, frozen=True)
class ScoreMessage:
    """What goes onto the bus for one successful fetch."""

    entity_id: str
    score: str
    attempt_ts: float

    def to_payload(self) -> dict[str, Any]:
        ts = datetime.fromtimestamp(self.attempt_ts, tz=timezone.utc)
        return {
            "eventId": self.entity_id,
            "score": self.score,
            "timestamp": ts.isoformat().replace("+00:00", "Z"),
        }
