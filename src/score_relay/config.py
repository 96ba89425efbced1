# src/score_relay/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time; without a score API URL or Kafka
  bootstrap the service runs with offline stand-ins.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "RELAY"

logger = logging.getLogger(__name__)

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Scheduler ----
    interval_min_ms: int
    interval_max_ms: int
    interval_initial_ms: int
    batch_size: int
    execution_interval_s: float
    in_flight_timeout_s: float
    worker_concurrency: int
    shutdown_grace_s: float

    # ---- Score API ----
    score_api_base_url: str
    score_api_connect_timeout_s: float
    score_api_read_timeout_s: float
    score_api_max_attempts: int

    # ---- Kafka ----
    kafka_bootstrap: str
    kafka_topic: str
    kafka_send_timeout_s: float
    kafka_max_retries: int
    kafka_retry_backoff_ms: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "score-relay")
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/score_relay"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        settings = Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            interval_min_ms=_env_int(_k("INTERVAL_MIN_MS"), 100),
            interval_max_ms=_env_int(_k("INTERVAL_MAX_MS"), 5000),
            interval_initial_ms=_env_int(_k("INTERVAL_INITIAL_MS"), 1000),
            batch_size=_env_int(_k("BATCH_SIZE"), 100),
            execution_interval_s=_env_float(_k("EXECUTION_INTERVAL_SECONDS"), 10.0),
            in_flight_timeout_s=_env_float(_k("IN_FLIGHT_TIMEOUT_SECONDS"), 45.0),
            worker_concurrency=_env_int(_k("WORKER_CONCURRENCY"), 8),
            shutdown_grace_s=_env_float(_k("SHUTDOWN_GRACE_SECONDS"), 10.0),
            score_api_base_url=_env(_k("SCORE_API_BASE_URL"), "").strip(),
            score_api_connect_timeout_s=_env_float(_k("SCORE_API_CONNECT_TIMEOUT_SECONDS"), 1.0),
            score_api_read_timeout_s=_env_float(_k("SCORE_API_READ_TIMEOUT_SECONDS"), 2.0),
            score_api_max_attempts=_env_int(_k("SCORE_API_MAX_ATTEMPTS"), 3),
            kafka_bootstrap=_env(_k("KAFKA_BOOTSTRAP"), "").strip(),
            kafka_topic=_env(_k("KAFKA_TOPIC"), "live-events-scores"),
            kafka_send_timeout_s=_env_float(_k("KAFKA_SEND_TIMEOUT_SECONDS"), 5.0),
            kafka_max_retries=_env_int(_k("KAFKA_MAX_RETRIES"), 3),
            kafka_retry_backoff_ms=_env_int(_k("KAFKA_RETRY_BACKOFF_MS"), 200),
        )
        return settings.validate()

    def worst_case_processing_s(self) -> float:
        """Upper bound of one task's fetch + publish time, retries included."""
        fetch = self.score_api_max_attempts * (self.score_api_connect_timeout_s + self.score_api_read_timeout_s + 1.0)
        # lazy producer start + one bounded send per attempt
        publish = self.kafka_send_timeout_s + self.kafka_max_retries * self.kafka_send_timeout_s
        backoff = self.kafka_retry_backoff_ms / 1000.0 * (2 ** max(0, self.kafka_max_retries - 1))
        return fetch + publish + backoff

    def validate(self) -> "Settings":
        """Clamp inconsistent scheduler values instead of failing at start-up."""
        min_ms = max(1, self.interval_min_ms)
        max_ms = max(min_ms, self.interval_max_ms)
        initial_ms = max(min_ms, min(max_ms, self.interval_initial_ms))

        fixed = replace(
            self,
            interval_min_ms=min_ms,
            interval_max_ms=max_ms,
            interval_initial_ms=initial_ms,
            batch_size=max(1, self.batch_size),
            worker_concurrency=max(1, self.worker_concurrency),
            execution_interval_s=max(0.0, self.execution_interval_s),
            score_api_max_attempts=max(1, self.score_api_max_attempts),
            kafka_max_retries=max(1, self.kafka_max_retries),
        )
        if fixed != self:
            logger.warning("Scheduler settings adjusted to a consistent range.")

        worst = fixed.worst_case_processing_s()
        if fixed.in_flight_timeout_s <= worst:
            logger.warning(
                "in_flight_timeout_s=%.1f does not exceed worst-case processing time %.1fs; "
                "slow tasks may be reclaimed and processed twice.",
                fixed.in_flight_timeout_s,
                worst,
            )
        return fixed


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
