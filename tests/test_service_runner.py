# tests/test_service_runner.py

from __future__ import annotations

from score_relay.cli.commands import registry
from score_relay.connectors.service_runner import start_service_in_background


def test_background_service_runs_ticks_and_stops(state) -> None:
    state.lifecycle.set_active("e1", True)

    runner = start_service_in_background(state)
    assert runner is not None
    state.service = runner
    try:
        reply = registry.handle(state, "/tick") or ""
        assert reply.startswith("Tick done: processed=1")
    finally:
        runner.stop()
        runner.join(timeout=10)

    assert not runner.thread.is_alive()
    assert not state.scheduler.running
    # stop() drains the queue before returning
    assert [m.entity_id for m in state.publisher.published] == ["e1"]
