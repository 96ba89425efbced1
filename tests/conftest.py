# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from score_relay.core.state import AppState
from score_relay.tasks.lifecycle import TaskLifecycle
from score_relay.tasks.reclaimer import StuckTaskReclaimer
from score_relay.tasks.task_processor import TaskProcessor
from score_relay.tasks.task_scheduler import AdaptiveScheduler, DelayPolicy
from score_relay.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeFetcher, FakePublisher


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="score-relay-test",
        log_level="DEBUG",
        console_enabled=False,
        # Paths (tmp per test run)
        data_dir=tmp_path / "data",
        tasks_db_path=tmp_path / "data" / "tasks.sqlite3",
        # Scheduler
        interval_min_ms=100,
        interval_max_ms=5000,
        interval_initial_ms=1000,
        batch_size=10,
        execution_interval_s=10.0,
        in_flight_timeout_s=30.0,
        worker_concurrency=2,
        shutdown_grace_s=2.0,
        # Offline stand-ins
        score_api_base_url="",
        score_api_connect_timeout_s=1.0,
        score_api_read_timeout_s=2.0,
        score_api_max_attempts=3,
        kafka_bootstrap="",
        kafka_topic="live-events-scores",
        kafka_send_timeout_s=5.0,
        kafka_max_retries=3,
        kafka_retry_backoff_ms=200,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def lifecycle(store: TaskStore, clock: FakeClock) -> TaskLifecycle:
    return TaskLifecycle(store, execution_interval_s=10.0, clock=clock)


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: TaskStore,
    lifecycle: TaskLifecycle,
    fetcher: FakeFetcher,
    publisher: FakePublisher,
    clock: FakeClock,
) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep a real SQLite TaskStore here because its correctness
    is part of what we want to test.
    """
    reclaimer = StuckTaskReclaimer(store)
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
        clock=clock,
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
