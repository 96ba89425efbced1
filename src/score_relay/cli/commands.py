# src/score_relay/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.state import AppState
from ..tasks.task_api import set_event_live
from ..tasks.task_models import Task, TaskStatus

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /live, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _fmt_task(task: Task) -> str:
    line = (
        f"#{task.id} {task.entity_id} [{task.status.value}] "
        f"next={_fmt_ts(task.next_due_at)} runs={task.execution_count}"
    )
    if task.last_error:
        err = task.last_error if len(task.last_error) <= 80 else task.last_error[:77] + "..."
        line += f" last_error@{_fmt_ts(task.last_error_at)}: {err}"
    return line


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def _set_live(state: AppState, args: list[str], live: bool) -> str:
    if not args:
        return f"Usage: /{'live' if live else 'off'} <event_id>"
    try:
        task = set_event_live(state, args[0], live)
    except ValueError as e:
        return f"Invalid request: {e}"
    return f"Event {task.entity_id} is now {task.status.value} (task id={task.id})."


def cmd_live(state: AppState, args: list[str]) -> str:
    return _set_live(state, args, True)


def cmd_off(state: AppState, args: list[str]) -> str:
    return _set_live(state, args, False)


def cmd_status(state: AppState, args: list[str]) -> str:
    stats = state.scheduler.stats()
    counts = state.task_store.counts_by_status()
    text = (
        "Status:\n"
        f"  Tasks: active={counts[TaskStatus.ACTIVE]} in_flight={counts[TaskStatus.IN_FLIGHT]} "
        f"inactive={counts[TaskStatus.INACTIVE]}\n"
        f"  Scheduler: running={state.scheduler.running} interval={stats.current_delay_ms}ms "
        f"batch={state.scheduler.batch_size} queued={stats.queued}\n"
        f"  Last tick: processed={stats.last_processed} duration={stats.last_duration_ms}ms\n"
        f"  Totals: ticks={stats.ticks} skipped={stats.skipped_ticks} errors={stats.tick_errors} "
        f"dispatched={stats.dispatched_total} reclaimed={stats.reclaimed_total}"
    )

    # Only the log-only publisher keeps messages in memory.
    recent = list(getattr(state.publisher, "recent", ()))[-5:]
    if recent:
        text += "\n  Last published: " + ", ".join(f"{m.entity_id}={m.score}" for m in recent)
    return text


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks            -> 20 most recently updated tasks
    /tasks <n>        -> n most recently updated tasks
    /tasks <status>   -> filter by status (active | in_flight | inactive)
    """
    limit = 20
    status: TaskStatus | None = None
    for a in args:
        if a.isdigit():
            limit = max(1, int(a))
        else:
            try:
                status = TaskStatus(a.lower())
            except ValueError:
                return "Usage: /tasks [n] [active|in_flight|inactive]"

    tasks = state.task_store.list_tasks(limit=limit, status=status)
    if not tasks:
        return "No tasks."
    return "\n".join(_fmt_task(t) for t in tasks)


def cmd_tick(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    runner = state.service
    if runner is None:
        return "Scheduler is not running."

    if emit:
        emit("[TICK] Running one scheduler tick...")

    try:
        outcome = runner.call(state.scheduler.trigger(), timeout=30.0)
    except Exception:
        logger.exception("Manual tick failed.")
        return "Tick failed (see log)."

    if outcome.skipped:
        return "A tick is already running; skipped."
    if outcome.failed:
        return "Tick failed (see log)."
    return (
        f"Tick done: processed={outcome.processed} reclaimed={outcome.reclaimed} "
        f"duration={outcome.duration_ms}ms next interval={state.scheduler.current_delay_ms}ms"
    )


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("live", cmd_live, help_text="Start polling an event: /live <event_id>.", aliases=["on"])
registry.register("off", cmd_off, help_text="Stop polling an event: /off <event_id>.")
registry.register("status", cmd_status, help_text="Show scheduler state and task counts.")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks [n] [status].")
registry.register("tick", cmd_tick, help_text="Run one scheduler tick now.")
