# src/score_relay/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.lifecycle import TaskLifecycle
from ..tasks.reclaimer import StuckTaskReclaimer
from ..tasks.task_processor import TaskProcessor
from ..tasks.task_scheduler import AdaptiveScheduler
from .ports import ScoreFetcher, ScorePublisher, TaskRepo


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    task_store: TaskRepo
    lifecycle: TaskLifecycle
    reclaimer: StuckTaskReclaimer
    fetcher: ScoreFetcher
    publisher: ScorePublisher
    processor: TaskProcessor
    scheduler: AdaptiveScheduler

    # Background runner hosting the scheduler's event loop (set by cli.main).
    service: Any | None = None
