# tests/test_lifecycle.py

from __future__ import annotations

import logging
import threading
from dataclasses import replace

import pytest

from score_relay.core.errors import TaskNotFound
from score_relay.tasks.lifecycle import TaskLifecycle, truncate_error
from score_relay.tasks.task_models import Task, TaskStatus
from score_relay.tasks.task_store import TaskStore

from .fakes import FakeClock


def _in_flight(store: TaskStore, entity_id: str, *, attempt_ts: float, count: int = 0) -> Task:
    return store.save(
        Task(
            id=None,
            entity_id=entity_id,
            status=TaskStatus.IN_FLIGHT,
            created_at=attempt_ts - 100,
            updated_at=attempt_ts,
            next_due_at=attempt_ts,
            last_attempt_at=attempt_ts,
            execution_count=count,
        )
    )


def test_set_active_live_creates_task_due_now(lifecycle: TaskLifecycle, clock: FakeClock) -> None:
    task = lifecycle.set_active("e1", True)

    assert task.id is not None
    assert task.status == TaskStatus.ACTIVE
    assert task.next_due_at == clock.now
    assert task.execution_count == 0


def test_set_active_off_clears_due_time(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    lifecycle.set_active("e1", True)
    task = lifecycle.set_active("e1", False)

    assert task.status == TaskStatus.INACTIVE
    assert task.next_due_at is None
    assert store.find_by_entity_id("e1") == task


def test_set_active_off_for_unknown_entity_creates_inactive_task(lifecycle: TaskLifecycle) -> None:
    task = lifecycle.set_active("never-seen", False)
    assert task.id is not None
    assert task.status == TaskStatus.INACTIVE
    assert task.next_due_at is None


def test_set_active_is_idempotent_and_last_call_wins(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    first = lifecycle.set_active("e1", True, now_ts=100.0)
    second = lifecycle.set_active("e1", True, now_ts=105.0)

    assert first.id == second.id
    assert second.next_due_at == 105.0
    assert second.created_at == 100.0
    assert store.count_tasks() == 1


def test_set_active_keeps_error_fields(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    t = lifecycle.set_active("e1", True, now_ts=100.0)
    store.save(replace(t, last_error="boom", last_error_at=101.0))

    again = lifecycle.set_active("e1", True, now_ts=200.0)
    assert again.last_error == "boom"
    assert again.last_error_at == 101.0


def test_set_active_rejects_blank_entity(lifecycle: TaskLifecycle) -> None:
    with pytest.raises(ValueError):
        lifecycle.set_active("   ", True)


def test_claim_due_batch_claims_oldest_first(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    c = lifecycle.set_active("c", True, now_ts=30.0)
    a = lifecycle.set_active("a", True, now_ts=10.0)
    b = lifecycle.set_active("b", True, now_ts=20.0)
    lifecycle.set_active("future", True, now_ts=1000.0)

    claimed = lifecycle.claim_due_batch(100.0, 2)
    assert claimed == [a.id, b.id]

    for task_id in claimed:
        t = store.find_by_id(task_id)
        assert t is not None
        assert t.status == TaskStatus.IN_FLIGHT
        assert t.last_attempt_at == 100.0

    # the left-over due task is picked up by the next call
    assert lifecycle.claim_due_batch(100.0, 2) == [c.id]
    assert lifecycle.claim_due_batch(100.0, 2) == []


def test_claim_due_batch_warns_when_backlog_exceeds_limit(
    lifecycle: TaskLifecycle, caplog: pytest.LogCaptureFixture
) -> None:
    for i in range(5):
        lifecycle.set_active(f"e{i}", True, now_ts=float(i))

    with caplog.at_level(logging.WARNING, logger="score_relay.tasks.lifecycle"):
        claimed = lifecycle.claim_due_batch(100.0, 3)

    assert len(claimed) == 3
    assert "Found 5 due tasks, claiming only 3" in caplog.text


def test_claim_due_batch_with_zero_limit(lifecycle: TaskLifecycle) -> None:
    lifecycle.set_active("e1", True, now_ts=1.0)
    assert lifecycle.claim_due_batch(100.0, 0) == []


def test_report_success_schedules_next_poll(lifecycle: TaskLifecycle, store: TaskStore, clock: FakeClock) -> None:
    t = _in_flight(store, "e1", attempt_ts=500.0, count=5)
    store.save(replace(t, last_error="old", last_error_at=400.0))

    done = lifecycle.report_success(t.id, 500.0)

    assert done.status == TaskStatus.ACTIVE
    assert done.execution_count == 6
    assert done.next_due_at == 510.0
    assert done.last_error is None
    assert done.last_error_at is None
    assert done.updated_at == clock.now
    assert store.find_by_id(t.id) == done


def test_report_failure_keeps_task_active_and_records_error(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    t = _in_flight(store, "e1", attempt_ts=500.0)

    done = lifecycle.report_failure(t.id, 500.0, "Score API returned 503")

    assert done.status == TaskStatus.ACTIVE
    assert done.execution_count == 1
    assert done.next_due_at == 510.0
    assert done.last_error == "Score API returned 503"
    assert done.last_error_at == 500.0


def test_report_failure_truncates_long_errors(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    t = _in_flight(store, "e1", attempt_ts=500.0)
    detail = "a" * 1000 + "b" * 500

    done = lifecycle.report_failure(t.id, 500.0, detail)

    assert done.last_error == "a" * 1000
    stored = store.find_by_id(t.id)
    assert stored is not None
    assert len(stored.last_error or "") == 1000


def test_report_failure_without_detail(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    t = _in_flight(store, "e1", attempt_ts=500.0)
    done = lifecycle.report_failure(t.id, 500.0, None)
    assert done.last_error == "unknown error"


def test_report_on_missing_task_raises(lifecycle: TaskLifecycle) -> None:
    with pytest.raises(TaskNotFound):
        lifecycle.report_success(424242, 1.0)
    with pytest.raises(TaskNotFound):
        lifecycle.report_failure(424242, 1.0, "x")
    with pytest.raises(TaskNotFound):
        lifecycle.resolve_entity_id(424242)


def test_report_for_task_not_in_flight_is_applied_with_warning(
    lifecycle: TaskLifecycle, caplog: pytest.LogCaptureFixture
) -> None:
    t = lifecycle.set_active("e1", False, now_ts=1.0)

    with caplog.at_level(logging.WARNING, logger="score_relay.tasks.lifecycle"):
        done = lifecycle.report_success(t.id, 50.0)

    assert done.status == TaskStatus.ACTIVE
    assert done.next_due_at == 60.0
    assert "expected in_flight" in caplog.text


def test_truncate_error() -> None:
    assert truncate_error(None) is None
    assert truncate_error("short") == "short"
    assert truncate_error("abcdef", limit=3) == "abc"


def test_concurrent_claimers_never_claim_the_same_task(settings) -> None:
    seed = TaskLifecycle(TaskStore(settings.tasks_db_path), clock=lambda: 1.0)
    expected = {seed.set_active(f"e{i}", True, now_ts=float(i)).id for i in range(60)}

    claimed: list[list[int]] = []
    errors: list[BaseException] = []
    barrier = threading.Barrier(4)

    def worker() -> None:
        # separate store per thread: separate connections, same database file
        lc = TaskLifecycle(TaskStore(settings.tasks_db_path))
        mine: list[int] = []
        try:
            barrier.wait()
            while True:
                batch = lc.claim_due_batch(1000.0, 5)
                if not batch:
                    break
                mine.extend(batch)
        except BaseException as e:
            errors.append(e)
        claimed.append(mine)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for th in threads:
        th.start()
    for th in threads:
        th.join(timeout=60)

    assert not errors
    flat = [task_id for batch in claimed for task_id in batch]
    assert len(flat) == len(set(flat))
    assert set(flat) == expected
