# src/score_relay/messaging/offline.py

from __future__ import annotations

import logging
from collections import deque

from ..tasks.task_models import ScoreMessage

logger = logging.getLogger(__name__)


class LogOnlyPublisher:
    """
    Stand-in bus used when no Kafka bootstrap is configured.

    Logs every message and keeps the most recent ones (shown by /status).
    """

    def __init__(self, *, keep_last: int = 50) -> None:
        self.recent: deque[ScoreMessage] = deque(maxlen=max(1, int(keep_last)))

    async def start(self) -> None:
        logger.info("Kafka disabled: score messages are only logged")

    async def stop(self) -> None:
        return

    async def publish(self, message: ScoreMessage) -> None:
        self.recent.append(message)
        logger.info("Score %s: %s", message.entity_id, message.to_payload())
