# src/score_relay/tasks/task_scheduler.py

from __future__ import annotations

"""
Adaptive task scheduler.

A single logical timer that, on every tick:
- releases stuck in_flight tasks,
- claims a bounded batch of due tasks,
- hands the claimed ids to a bounded worker pool (fire-and-forget),
- re-tunes its own delay from the batch size and the tick duration.

Tick duration covers reclaim + claim + enqueue only, not the processing itself.
A saturated worker pool still slows the scheduler down: the queue is bounded,
so enqueueing waits and the wait shows up in the duration.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from ..core.errors import ClaimConflict, SchedulerTickError
from ..logging_setup import trace_context
from .lifecycle import TaskLifecycle
from .reclaimer import StuckTaskReclaimer
from .task_processor import TaskProcessor

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class DelayPolicy:
    min_delay_ms: int = 100
    max_delay_ms: int = 5000
    initial_delay_ms: int = 1000

    idle_step_ms: int = 500  # nothing due: back off
    load_step_ms: int = 200  # batch saturated: speed up
    light_step_ms: int = 100  # less than half a batch: drift slower
    overrun_margin_ms: int = 100  # tick took longer than the delay
    error_penalty_ms: int = 500

    def clamp(self, delay_ms: int) -> int:
        return max(self.min_delay_ms, min(self.max_delay_ms, int(delay_ms)))


def adjust_delay(
    current_ms: int,
    processed: int,
    duration_ms: int,
    *,
    batch_size: int,
    policy: DelayPolicy,
) -> int:
    """
    Next inter-tick delay from the load observed in the last tick.

    - empty batch          -> + idle step
    - full batch           -> - load step
    - under half a batch   -> + light step
    - otherwise            -> unchanged
    A tick slower than the resulting delay forces delay = duration + margin.
    The result always stays within [min_delay_ms, max_delay_ms].
    """
    if processed == 0:
        new_ms = min(policy.max_delay_ms, current_ms + policy.idle_step_ms)
    elif processed >= batch_size:
        new_ms = max(policy.min_delay_ms, current_ms - policy.load_step_ms)
    elif processed < batch_size // 2:
        new_ms = min(policy.max_delay_ms, current_ms + policy.light_step_ms)
    else:
        new_ms = current_ms

    if duration_ms > new_ms:
        new_ms = min(policy.max_delay_ms, duration_ms + policy.overrun_margin_ms)

    return policy.clamp(new_ms)


def penalize_delay(current_ms: int, *, policy: DelayPolicy) -> int:
    return policy.clamp(current_ms + policy.error_penalty_ms)


@dataclass(slots=True, frozen=True)
class TickOutcome:
    processed: int = 0
    reclaimed: int = 0
    duration_ms: int = 0
    skipped: bool = False
    failed: bool = False


@dataclass(slots=True)
class SchedulerStats:
    current_delay_ms: int = 0
    ticks: int = 0
    skipped_ticks: int = 0
    tick_errors: int = 0
    reclaimed_total: int = 0
    dispatched_total: int = 0
    last_processed: int = 0
    last_duration_ms: int = 0
    queued: int = 0


class AdaptiveScheduler:
    """
    To run: start() inside a running event loop, later `await stop()`.
    Tests can drive it one tick at a time with `await tick()`.
    """

    def __init__(
        self,
        lifecycle: TaskLifecycle,
        reclaimer: StuckTaskReclaimer,
        processor: TaskProcessor,
        *,
        batch_size: int = 100,
        stale_after_s: float = 30.0,
        worker_concurrency: int = 8,
        queue_capacity: int | None = None,
        policy: DelayPolicy | None = None,
        shutdown_grace_s: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lifecycle = lifecycle
        self._reclaimer = reclaimer
        self._processor = processor

        self._batch_size = max(1, int(batch_size))
        self._stale_after_s = float(stale_after_s)
        self._worker_concurrency = max(1, int(worker_concurrency))
        self._policy = policy or DelayPolicy()
        self._shutdown_grace_s = float(shutdown_grace_s)
        self._clock = clock

        capacity = queue_capacity if queue_capacity is not None else self._batch_size * 2
        self._queue: asyncio.Queue[tuple[int, float]] = asyncio.Queue(maxsize=max(self._batch_size, int(capacity)))

        self._current_delay_ms = self._policy.clamp(self._policy.initial_delay_ms)
        self._guard = asyncio.Lock()
        self._stats = SchedulerStats(current_delay_ms=self._current_delay_ms)

        self._timer: asyncio.Task[None] | None = None
        self._workers: list[asyncio.Task[None]] = []

    @property
    def current_delay_ms(self) -> int:
        return self._current_delay_ms

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def stats(self) -> SchedulerStats:
        return replace(self._stats, current_delay_ms=self._current_delay_ms, queued=self._queue.qsize())

    # ---- tick ----

    async def tick(self) -> TickOutcome:
        """
        Run one reclaim -> claim -> dispatch pass, unless one is already running.

        A skipped tick does not touch the delay; the caller just schedules the next one.
        """
        if self._guard.locked():
            self._stats.skipped_ticks += 1
            logger.warning("Previous tick still running, skipping")
            return TickOutcome(skipped=True)

        async with self._guard:
            with trace_context():
                self._stats.ticks += 1
                started = time.monotonic()
                try:
                    reclaimed, processed = await self._run_tick()
                except SchedulerTickError:
                    self._stats.tick_errors += 1
                    previous = self._current_delay_ms
                    self._current_delay_ms = penalize_delay(previous, policy=self._policy)
                    logger.exception(
                        "Error in scheduler tick; delay %dms -> %dms",
                        previous,
                        self._current_delay_ms,
                    )
                    return TickOutcome(failed=True, duration_ms=self._elapsed_ms(started))

                duration_ms = self._elapsed_ms(started)
                self._apply_load(processed, duration_ms)

                if processed or reclaimed:
                    logger.info(
                        "Processed %d tasks (reclaimed %d) in %dms, next interval: %dms",
                        processed,
                        reclaimed,
                        duration_ms,
                        self._current_delay_ms,
                    )
                else:
                    logger.debug("No tasks due, next interval: %dms", self._current_delay_ms)

                return TickOutcome(processed=processed, reclaimed=reclaimed, duration_ms=duration_ms)

    async def trigger(self) -> TickOutcome:
        """Run a tick now, outside the timer cadence (console /tick)."""
        logger.info("Manual tick requested")
        return await self.tick()

    async def _run_tick(self) -> tuple[int, int]:
        now = self._clock()
        try:
            reclaimed = self._reclaimer.reclaim_stuck(now, self._stale_after_s)
            task_ids = self._lifecycle.claim_due_batch(now, self._batch_size)
            for task_id in task_ids:
                await self._queue.put((task_id, now))
        except ClaimConflict as exc:
            logger.error("Claim conflict on task %s: claim locking is broken", exc.task_id)
            raise SchedulerTickError(str(exc)) from exc
        except Exception as exc:
            raise SchedulerTickError(f"Scheduler tick failed: {exc}") from exc

        self._stats.reclaimed_total += reclaimed
        self._stats.dispatched_total += len(task_ids)
        return reclaimed, len(task_ids)

    def _apply_load(self, processed: int, duration_ms: int) -> None:
        previous = self._current_delay_ms
        self._current_delay_ms = adjust_delay(
            previous,
            processed,
            duration_ms,
            batch_size=self._batch_size,
            policy=self._policy,
        )
        self._stats.last_processed = processed
        self._stats.last_duration_ms = duration_ms

        if duration_ms > previous:
            logger.warning("Processing took %dms, adjusting interval to %dms", duration_ms, self._current_delay_ms)
        elif self._current_delay_ms != previous:
            logger.debug(
                "Interval: %dms -> %dms (processed: %d, duration: %dms)",
                previous,
                self._current_delay_ms,
                processed,
                duration_ms,
            )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    # ---- timer + worker pool ----

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._current_delay_ms / 1000.0)
            await self.tick()

    async def _run_worker(self, index: int) -> None:
        while True:
            task_id, attempt_ts = await self._queue.get()
            try:
                await self._processor.process(task_id, attempt_ts)
            except Exception:
                # process() absorbs per-task errors; anything here is a bug, keep the worker alive.
                logger.exception("Worker %d crashed on task %s", index, task_id)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Spawn the timer and the workers on the running event loop."""
        if self.running:
            return

        self._workers = [
            asyncio.create_task(self._run_worker(i), name=f"score-relay-worker-{i}")
            for i in range(self._worker_concurrency)
        ]
        self._timer = asyncio.create_task(self._run_timer(), name="score-relay-scheduler")
        logger.info(
            "Starting adaptive scheduler: polling interval %d-%dms, batch %d, workers %d, task execution every %.0fs",
            self._policy.min_delay_ms,
            self._policy.max_delay_ms,
            self._batch_size,
            self._worker_concurrency,
            self._lifecycle.execution_interval_s,
        )

    async def stop(self) -> None:
        """
        Cancel the timer, give queued work `shutdown_grace_s` to finish, then
        cancel the workers. Anything abandoned stays in_flight and is picked up
        by the reclaimer after the stuck timeout.
        """
        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None

        if self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self._shutdown_grace_s)
            except asyncio.TimeoutError:
                logger.warning(
                    "Shutdown grace period elapsed; abandoning %d queued tasks",
                    self._queue.qsize(),
                )

            for w in self._workers:
                w.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []

        logger.info("Stopped adaptive scheduler")
