# src/score_relay/core/errors.py

from __future__ import annotations

"""
Error taxonomy.

Per-task errors (fetch/publish/not-found) are absorbed by the task processor and
turned into a stored last_error plus a normal retry. Only store failures during
reclaim/claim surface at tick level, and those only slow the scheduler down.
"""


class ScoreRelayError(Exception):
    """Base class for all project errors."""


class TaskNotFound(ScoreRelayError):
    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class FetchTransientError(ScoreRelayError):
    """
    Remote score source unavailable, slow or returning garbage.

    `permanent` marks responses that will not get better by retrying (e.g. 404),
    but the caller still treats them like any other failure.
    """

    def __init__(self, entity_id: str, message: str, *, permanent: bool = False) -> None:
        super().__init__(message)
        self.entity_id = entity_id
        self.permanent = permanent


class PublishTransientError(ScoreRelayError):
    def __init__(self, entity_id: str, message: str) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class ClaimConflict(ScoreRelayError):
    """A row changed under a claim transaction. Indicates a locking bug."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Claim conflict on task {task_id}")
        self.task_id = task_id


class SchedulerTickError(ScoreRelayError):
    """Unexpected failure inside a scheduler tick (reclaim/claim/dispatch)."""
