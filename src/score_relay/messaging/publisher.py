# src/score_relay/messaging/publisher.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from ..core.errors import PublishTransientError
from ..tasks.task_models import ScoreMessage

logger = logging.getLogger(__name__)


def _serialize(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


class KafkaScorePublisher:
    """
    Synchronous-from-the-caller's-view Kafka publisher.

    publish() returns only after the broker acknowledged the record:
    - each attempt is bounded by send_timeout_s
    - up to max_retries attempts, backoff retry_backoff_ms x2 between them
    - the record key is the entity id, so one entity's updates stay ordered on one partition
    """

    def __init__(
        self,
        bootstrap_servers: str,
        *,
        topic: str = "live-events-scores",
        send_timeout_s: float = 5.0,
        max_retries: int = 3,
        retry_backoff_ms: int = 200,
        producer: Any | None = None,
    ) -> None:
        if producer is None and not (bootstrap_servers or "").strip():
            raise RuntimeError("Kafka bootstrap servers are not set. Set RELAY_KAFKA_BOOTSTRAP in your .env.")

        self._topic = topic
        self._send_timeout_s = float(send_timeout_s)
        self._max_retries = max(1, int(max_retries))
        self._retry_backoff_s = max(0, int(retry_backoff_ms)) / 1000.0
        self._bootstrap = bootstrap_servers
        self._producer = producer
        self._owns_producer = producer is None
        self._started = producer is not None
        self._start_lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._start_lock:
            if self._started:
                return
            # Created here, not in __init__: the producer binds to the running loop.
            producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap,
                acks="all",
                value_serializer=_serialize,
                key_serializer=lambda k: k.encode("utf-8"),
            )
            try:
                await producer.start()
            except BaseException:
                # Also reached on cancellation by publish()'s start bound.
                with contextlib.suppress(Exception):
                    await asyncio.wait_for(producer.stop(), timeout=self._send_timeout_s)
                raise
            self._producer = producer
            self._started = True
        logger.info("Kafka producer started bootstrap=%s topic=%s", self._bootstrap, self._topic)

    async def stop(self) -> None:
        if self._producer is not None and self._owns_producer and self._started:
            try:
                await self._producer.stop()
            except KafkaError:
                logger.debug("Kafka producer stop failed.", exc_info=True)
            logger.info("Kafka producer stopped")
        self._started = False

    async def publish(self, message: ScoreMessage) -> None:
        if not self._started:
            # Lazy start is bounded by the send timeout, lock wait included.
            try:
                await asyncio.wait_for(self.start(), timeout=self._send_timeout_s)
            except (KafkaError, asyncio.TimeoutError) as e:
                raise PublishTransientError(
                    message.entity_id,
                    f"Kafka producer unavailable for event {message.entity_id}: {e.__class__.__name__}: {e}",
                ) from e

        payload = message.to_payload()
        backoff = self._retry_backoff_s

        for attempt in range(1, self._max_retries + 1):
            try:
                meta = await asyncio.wait_for(
                    self._producer.send_and_wait(self._topic, value=payload, key=message.entity_id),
                    timeout=self._send_timeout_s,
                )
            except (KafkaError, asyncio.TimeoutError) as e:
                if attempt >= self._max_retries:
                    raise PublishTransientError(
                        message.entity_id,
                        f"Kafka publish failure for event {message.entity_id}: {e.__class__.__name__}: {e}",
                    ) from e
                logger.info(
                    "Kafka publish failed for %s (attempt %d/%d): %s; retrying in %.2fs",
                    message.entity_id,
                    attempt,
                    self._max_retries,
                    e.__class__.__name__,
                    backoff,
                )
                await asyncio.sleep(backoff)
                backoff *= 2
                continue

            logger.info(
                "Published event %s to topic %s partition %s offset %s",
                message.entity_id,
                getattr(meta, "topic", self._topic),
                getattr(meta, "partition", "?"),
                getattr(meta, "offset", "?"),
            )
            return
