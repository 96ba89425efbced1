# src/score_relay/connectors/service_runner.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from ..core.state import AppState

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _maybe_call(obj: Any, name: str) -> None:
    fn = getattr(obj, name, None)
    if fn is not None:
        await fn()


async def run_service(state: AppState, stop_event: asyncio.Event) -> None:
    """
    Run the polling service until stop_event is set:
    start the publisher, start the scheduler, wait, then shut both down.
    """
    try:
        await _maybe_call(state.publisher, "start")
    except Exception:
        # Publishes fail (and are retried via the task cadence) until the bus is reachable.
        logger.exception("Publisher failed to start; will retry on first publish.")
    state.scheduler.start()
    try:
        await stop_event.wait()
    finally:
        await state.scheduler.stop()
        with contextlib.suppress(Exception):
            await _maybe_call(state.publisher, "stop")
        with contextlib.suppress(Exception):
            await _maybe_call(state.fetcher, "aclose")


@dataclass
class ServiceBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def call(self, coro: Coroutine[Any, Any, T], timeout: float | None = 30.0) -> T:
        """Run a coroutine on the service loop from another thread and wait for its result."""
        fut = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return fut.result(timeout=timeout)

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Failed to signal service stop (loop already closed).", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_service_in_background(state: AppState) -> ServiceBackgroundRunner | None:
    """
    Start the scheduler in a background thread (so the console REPL can run in parallel).

    The console REPL is blocking (input()); the scheduler is async and wants its own event loop.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(run_service(state, stop_event))
        except Exception:
            logger.exception("Service loop crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    t = threading.Thread(target=runner, name="score-relay-service", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Service thread did not initialize properly.")
        return None

    logger.info("Service background thread started.")
    return ServiceBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
