# src/score_relay/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Iterator
from dataclasses import replace
from pathlib import Path

from .task_models import MAX_ERROR_LENGTH, Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Transactions:
    - connections run in autocommit mode; single statements are atomic on their own
    - transaction() opens BEGIN IMMEDIATE, which takes the database write lock
      before the first read. Two claimers (threads or processes) therefore
      serialize on the lock and never read the same due set.

    Thread-safety:
    - each method opens its own SQLite connection unless one is passed in via `conn`
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3", *, busy_timeout_s: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout_s = float(busy_timeout_s)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout_s, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _use(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        own = self._get_conn()
        try:
            yield own
        finally:
            own.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write transaction scoped to the `with` block.

        Commits on normal exit, rolls back on any exception (which is re-raised).
        """
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entity_id TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL DEFAULT 'inactive',
                    next_due_at REAL,
                    last_attempt_at REAL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    execution_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    last_error_at REAL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("next_due_at", "REAL")
            add_col("last_attempt_at", "REAL")
            add_col("execution_count", "INTEGER NOT NULL DEFAULT 0")
            add_col("last_error", "TEXT")
            add_col("last_error_at", "REAL")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status_due ON tasks(status, next_due_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status_attempt ON tasks(status, last_attempt_at)")
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            entity_id=str(row["entity_id"]),
            status=TaskStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            next_due_at=float(row["next_due_at"]) if row["next_due_at"] is not None else None,
            last_attempt_at=float(row["last_attempt_at"]) if row["last_attempt_at"] is not None else None,
            execution_count=int(row["execution_count"] or 0),
            last_error=row["last_error"],
            last_error_at=float(row["last_error_at"]) if row["last_error_at"] is not None else None,
        )

    # ---- public API ----

    def count_tasks(self) -> int:
        with self._use(None) as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def counts_by_status(self) -> dict[TaskStatus, int]:
        with self._use(None) as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS cnt FROM tasks GROUP BY status").fetchall()
        out: dict[TaskStatus, int] = {s: 0 for s in TaskStatus}
        for row in rows:
            out[TaskStatus.from_db(row["status"])] += int(row["cnt"])
        return out

    def find_by_id(self, task_id: int, *, conn: sqlite3.Connection | None = None) -> Task | None:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None

    def find_by_entity_id(self, entity_id: str, *, conn: sqlite3.Connection | None = None) -> Task | None:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM tasks WHERE entity_id = ?", (entity_id,)).fetchone()
            return self._row_to_task(row) if row else None

    def save(self, task: Task, *, conn: sqlite3.Connection | None = None) -> Task:
        """
        Insert (id is None) or fully overwrite (id set) a task row.

        Returns the stored task; for inserts, with the new id filled in.
        """
        last_error = task.last_error[:MAX_ERROR_LENGTH] if task.last_error is not None else None
        params = (
            task.entity_id,
            task.status.value,
            task.next_due_at,
            task.last_attempt_at,
            task.created_at,
            task.updated_at,
            int(task.execution_count),
            last_error,
            task.last_error_at,
        )

        with self._use(conn) as c:
            if task.id is None:
                cur = c.execute(
                    """
                    INSERT INTO tasks(
                        entity_id, status, next_due_at, last_attempt_at,
                        created_at, updated_at, execution_count,
                        last_error, last_error_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
                rowid = cur.lastrowid
                if rowid is None:
                    raise RuntimeError("SQLite did not return lastrowid for tasks insert")
                logger.debug("Task inserted id=%s entity_id=%s status=%s", rowid, task.entity_id, task.status.value)
                return replace(task, id=int(rowid), last_error=last_error)

            c.execute(
                """
                UPDATE tasks
                SET entity_id = ?, status = ?, next_due_at = ?, last_attempt_at = ?,
                    created_at = ?, updated_at = ?, execution_count = ?,
                    last_error = ?, last_error_at = ?
                WHERE id = ?
                """,
                (*params, int(task.id)),
            )
            return replace(task, last_error=last_error)

    def find_due_batch(
        self,
        status: TaskStatus,
        now_ts: float,
        limit: int,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[Task]:
        """Oldest-due first, so a backlog larger than one batch cannot starve a task."""
        with self._use(conn) as c:
            rows = c.execute(
                """
                SELECT *
                FROM tasks
                WHERE status = ?
                  AND next_due_at IS NOT NULL
                  AND next_due_at <= ?
                ORDER BY next_due_at ASC, id ASC
                    LIMIT ?
                """,
                (status.value, float(now_ts), int(limit)),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def count_due(self, status: TaskStatus, now_ts: float, *, conn: sqlite3.Connection | None = None) -> int:
        with self._use(conn) as c:
            (n,) = c.execute(
                "SELECT COUNT(*) FROM tasks WHERE status = ? AND next_due_at IS NOT NULL AND next_due_at <= ?",
                (status.value, float(now_ts)),
            ).fetchone()
            return int(n)

    def try_claim(self, task_id: int, now_ts: float, *, conn: sqlite3.Connection | None = None) -> bool:
        """
        Conditional claim:
          status = active -> status = in_flight, last_attempt_at = now

        Returns True if exactly this row was transitioned.
        """
        with self._use(conn) as c:
            cur = c.execute(
                """
                UPDATE tasks
                SET status = ?, last_attempt_at = ?, updated_at = ?
                WHERE id = ?
                  AND status = ?
                """,
                (
                    TaskStatus.IN_FLIGHT.value,
                    float(now_ts),
                    float(now_ts),
                    int(task_id),
                    TaskStatus.ACTIVE.value,
                ),
            )
            return cur.rowcount == 1

    def find_stale_in_flight(self, threshold_ts: float, *, conn: sqlite3.Connection | None = None) -> list[Task]:
        """In-flight tasks whose current attempt started strictly before threshold_ts."""
        with self._use(conn) as c:
            rows = c.execute(
                """
                SELECT *
                FROM tasks
                WHERE status = ?
                  AND last_attempt_at IS NOT NULL
                  AND last_attempt_at < ?
                ORDER BY last_attempt_at ASC
                """,
                (TaskStatus.IN_FLIGHT.value, float(threshold_ts)),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def list_tasks(self, *, limit: int = 20, status: TaskStatus | None = None) -> list[Task]:
        """Most recently updated first (used by console diagnostics)."""
        with self._use(None) as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM tasks ORDER BY updated_at DESC, id DESC LIMIT ?",
                    (int(limit),),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE status = ? ORDER BY updated_at DESC, id DESC LIMIT ?",
                    (status.value, int(limit)),
                ).fetchall()
            return [self._row_to_task(r) for r in rows]
