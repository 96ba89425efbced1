# src/score_relay/tasks/task_processor.py

from __future__ import annotations

import logging

from ..core.errors import TaskNotFound
from ..core.ports import ScoreFetcher, ScorePublisher
from ..logging_setup import trace_context
from .lifecycle import TaskLifecycle, truncate_error
from .task_models import ScoreMessage

logger = logging.getLogger(__name__)


def _error_text(exc: BaseException) -> str:
    return str(exc).strip() or exc.__class__.__name__


class TaskProcessor:
    """
    One unit of work per claimed task: fetch -> publish -> report.

    Every per-task error is absorbed here and turned into a stored last_error
    plus a normal retry; nothing escapes to the scheduler.
    """

    def __init__(self, lifecycle: TaskLifecycle, fetcher: ScoreFetcher, publisher: ScorePublisher) -> None:
        self._lifecycle = lifecycle
        self._fetcher = fetcher
        self._publisher = publisher

    async def process(self, task_id: int, attempt_ts: float) -> bool:
        """Returns True only if the score was fetched, published and the success recorded."""
        with trace_context():
            try:
                entity_id = self._lifecycle.resolve_entity_id(task_id)
            except TaskNotFound:
                logger.error("Task %s vanished before processing; abandoning", task_id)
                return False
            except Exception:
                logger.exception("Could not load task %s; left in_flight for the reclaimer", task_id)
                return False

            logger.debug("Processing task %s for entity %s", task_id, entity_id)

            try:
                score = await self._fetcher.fetch_score(entity_id)
                await self._publisher.publish(ScoreMessage(entity_id=entity_id, score=score, attempt_ts=attempt_ts))
                self._lifecycle.report_success(task_id, attempt_ts)
            except Exception as exc:
                message = truncate_error(_error_text(exc))
                logger.error("Failed to process task %s for entity %s: %s", task_id, entity_id, message)
                self._report_failure(task_id, attempt_ts, message)
                return False

            logger.info("Successfully processed task %s for entity %s", task_id, entity_id)
            return True

    def _report_failure(self, task_id: int, attempt_ts: float, message: str | None) -> None:
        # Not retried: the task stays in_flight until the reclaimer frees it.
        try:
            self._lifecycle.report_failure(task_id, attempt_ts, message)
        except TaskNotFound:
            logger.error("Task %s vanished; failure not recorded", task_id)
        except Exception:
            logger.exception("report_failure failed task_id=%s; left for the reclaimer", task_id)
