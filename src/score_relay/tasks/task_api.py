# src/score_relay/tasks/task_api.py

from __future__ import annotations

import logging

from ..core.state import AppState
from ..logging_setup import trace_context
from .task_models import Task

logger = logging.getLogger(__name__)


def set_event_live(state: AppState, entity_id: str, live: bool) -> Task:
    """
    Activation boundary: mark an external event as live (polled) or not.

    Idempotent. The only error returned to callers is a ValueError for bad input.
    Each call is logged under its own trace id.
    """
    if entity_id is None or not str(entity_id).strip():
        raise ValueError("eventId must not be blank")
    if not isinstance(live, bool):
        raise ValueError("live must be true or false")

    with trace_context():
        logger.info("Received event status update: eventId=%s, live=%s", entity_id, live)
        return state.lifecycle.set_active(str(entity_id).strip(), live)
