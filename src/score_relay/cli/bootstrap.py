# src/score_relay/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store, lifecycle, clients, scheduler).
"""

from __future__ import annotations

import logging

from ..clients.offline import OfflineScoreClient
from ..clients.score_client import HttpScoreClient
from ..config import get_settings
from ..core.ports import ScoreFetcher, ScorePublisher
from ..core.state import AppState
from ..messaging.offline import LogOnlyPublisher
from ..messaging.publisher import KafkaScorePublisher
from ..tasks.lifecycle import TaskLifecycle
from ..tasks.reclaimer import StuckTaskReclaimer
from ..tasks.task_processor import TaskProcessor
from ..tasks.task_scheduler import AdaptiveScheduler, DelayPolicy
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def _build_fetcher(settings) -> ScoreFetcher:
    if not settings.score_api_base_url:
        logger.info("Score API not configured: using offline random scores.")
        return OfflineScoreClient()
    return HttpScoreClient(
        settings.score_api_base_url,
        connect_timeout_s=settings.score_api_connect_timeout_s,
        read_timeout_s=settings.score_api_read_timeout_s,
        max_attempts=settings.score_api_max_attempts,
    )


def _build_publisher(settings) -> ScorePublisher:
    if not settings.kafka_bootstrap:
        return LogOnlyPublisher()
    return KafkaScorePublisher(
        settings.kafka_bootstrap,
        topic=settings.kafka_topic,
        send_timeout_s=settings.kafka_send_timeout_s,
        max_retries=settings.kafka_max_retries,
        retry_backoff_ms=settings.kafka_retry_backoff_ms,
    )


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_db_path)
    lifecycle = TaskLifecycle(store, execution_interval_s=settings.execution_interval_s)
    reclaimer = StuckTaskReclaimer(store)
    fetcher = _build_fetcher(settings)
    publisher = _build_publisher(settings)
    processor = TaskProcessor(lifecycle, fetcher, publisher)

    scheduler = AdaptiveScheduler(
        lifecycle,
        reclaimer,
        processor,
        batch_size=settings.batch_size,
        stale_after_s=settings.in_flight_timeout_s,
        worker_concurrency=settings.worker_concurrency,
        policy=DelayPolicy(
            min_delay_ms=settings.interval_min_ms,
            max_delay_ms=settings.interval_max_ms,
            initial_delay_ms=settings.interval_initial_ms,
        ),
        shutdown_grace_s=settings.shutdown_grace_s,
    )

    return AppState(
        settings=settings,
        task_store=store,
        lifecycle=lifecycle,
        reclaimer=reclaimer,
        fetcher=fetcher,
        publisher=publisher,
        processor=processor,
        scheduler=scheduler,
    )
