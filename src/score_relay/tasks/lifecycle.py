# src/score_relay/tasks/lifecycle.py

from __future__ import annotations

"""
Task lifecycle state machine.

    (new) --set_active(live)--> active --claim--> in_flight --report--> active
      any --set_active(not live)--> inactive
      in_flight --reclaim (stuck)--> active

Every transition is a single transaction against the store, so no partial
write is ever visible to another claimer.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import replace

from ..core.errors import ClaimConflict, TaskNotFound
from ..core.ports import TaskRepo
from .task_models import MAX_ERROR_LENGTH, Task, TaskStatus

logger = logging.getLogger(__name__)


def truncate_error(message: str | None, limit: int = MAX_ERROR_LENGTH) -> str | None:
    """Keep the prefix of an error message, at most `limit` characters."""
    if message is None:
        return None
    return message if len(message) <= limit else message[:limit]


class TaskLifecycle:
    def __init__(
        self,
        store: TaskRepo,
        *,
        execution_interval_s: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._interval_s = float(execution_interval_s)
        self._clock = clock

    @property
    def store(self) -> TaskRepo:
        return self._store

    @property
    def execution_interval_s(self) -> float:
        return self._interval_s

    def set_active(self, entity_id: str, live: bool, *, now_ts: float | None = None) -> Task:
        """
        Idempotent activation/deactivation of the task for `entity_id`.

        live=True  -> active, due immediately (whatever the previous state)
        live=False -> inactive, nothing scheduled
        Error fields are left untouched.
        """
        entity_id = (entity_id or "").strip()
        if not entity_id:
            raise ValueError("entity_id is required")

        now = self._clock() if now_ts is None else float(now_ts)

        with self._store.transaction() as tx:
            task = self._store.find_by_entity_id(entity_id, conn=tx)
            if task is None:
                task = Task(
                    id=None,
                    entity_id=entity_id,
                    status=TaskStatus.INACTIVE,
                    created_at=now,
                    updated_at=now,
                )

            if live:
                task = replace(task, status=TaskStatus.ACTIVE, next_due_at=now, updated_at=now)
            else:
                task = replace(task, status=TaskStatus.INACTIVE, next_due_at=None, updated_at=now)

            saved = self._store.save(task, conn=tx)

        logger.info(
            "Entity %s set to %s (task id=%s)",
            entity_id,
            saved.status.value,
            saved.id,
        )
        return saved

    def claim_due_batch(self, now_ts: float, limit: int) -> list[int]:
        """
        Claim up to `limit` due tasks, oldest-due first.

        Returns the claimed ids. Tasks beyond `limit` stay due for a later tick.
        """
        limit = int(limit)
        if limit <= 0:
            return []

        with self._store.transaction() as tx:
            tasks = self._store.find_due_batch(TaskStatus.ACTIVE, now_ts, limit, conn=tx)
            if not tasks:
                return []

            if len(tasks) == limit:
                total_due = self._store.count_due(TaskStatus.ACTIVE, now_ts, conn=tx)
                if total_due > limit:
                    logger.warning("Found %d due tasks, claiming only %d in this run", total_due, limit)

            claimed: list[int] = []
            for task in tasks:
                task_id = int(task.id)
                if not self._store.try_claim(task_id, now_ts, conn=tx):
                    raise ClaimConflict(task_id)
                claimed.append(task_id)

        logger.debug("Claimed %d tasks for processing", len(claimed))
        return claimed

    def resolve_entity_id(self, task_id: int) -> str:
        task = self._store.find_by_id(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task.entity_id

    def report_success(self, task_id: int, attempt_ts: float) -> Task:
        """Count the attempt, clear the error and schedule the next poll."""
        return self._complete(task_id, attempt_ts, error=None)

    def report_failure(self, task_id: int, attempt_ts: float, error_detail: str | None) -> Task:
        """
        Count the attempt and record the error. Never terminal: the task is
        retried on its normal cadence.
        """
        return self._complete(task_id, attempt_ts, error=truncate_error(error_detail) or "unknown error")

    def _complete(self, task_id: int, attempt_ts: float, *, error: str | None) -> Task:
        now = self._clock()

        with self._store.transaction() as tx:
            task = self._store.find_by_id(task_id, conn=tx)
            if task is None:
                raise TaskNotFound(task_id)

            if task.status != TaskStatus.IN_FLIGHT:
                logger.warning(
                    "Outcome reported for task %s in status %s (expected in_flight)",
                    task_id,
                    task.status.value,
                )

            task = replace(
                task,
                status=TaskStatus.ACTIVE,
                execution_count=task.execution_count + 1,
                next_due_at=float(attempt_ts) + self._interval_s,
                last_error=error,
                last_error_at=float(attempt_ts) if error is not None else None,
                updated_at=now,
            )
            return self._store.save(task, conn=tx)
