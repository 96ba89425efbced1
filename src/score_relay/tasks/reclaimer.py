# src/score_relay/tasks/reclaimer.py

from __future__ import annotations

import logging
from dataclasses import replace

from ..core.ports import TaskRepo
from .task_models import TaskStatus

logger = logging.getLogger(__name__)


class StuckTaskReclaimer:
    """
    Returns abandoned in-flight tasks to the due set.

    A processor that crashed, hung or lost its outcome report would otherwise
    leave its task in_flight forever. `stale_after_s` has to exceed the
    worst-case processing time (fetch timeout + publish timeout + margin), or
    slow-but-alive work gets processed twice.
    """

    def __init__(self, store: TaskRepo) -> None:
        self._store = store

    def reclaim_stuck(self, now_ts: float, stale_after_s: float) -> int:
        threshold = float(now_ts) - float(stale_after_s)

        with self._store.transaction() as tx:
            stuck = self._store.find_stale_in_flight(threshold, conn=tx)
            for task in stuck:
                self._store.save(
                    replace(task, status=TaskStatus.ACTIVE, next_due_at=float(now_ts), updated_at=float(now_ts)),
                    conn=tx,
                )

        if stuck:
            logger.warning(
                "Released %d stuck in_flight tasks for retry: %s",
                len(stuck),
                ", ".join(str(t.id) for t in stuck[:20]),
            )
        return len(stuck)
