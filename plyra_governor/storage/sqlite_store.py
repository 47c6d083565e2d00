"""
SQLite Store
~~~~~~~~~~~~

Durable storage for budgets, approval policies and approval queue items
backed by the standard library ``sqlite3`` module.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from plyra_governor.core.enums import (
    DecidedBy,
    PolicyAction,
    QueueStatus,
    ResetPeriod,
)
from plyra_governor.core.models import (
    ApprovalPolicy,
    ApprovalQueueItem,
    Budget,
    PolicyConditions,
    utcnow,
)
from plyra_governor.exceptions import ConsistencyError, StorageError

__all__ = ["SQLiteStore", "default_db_path"]

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS budgets (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    project_path      TEXT,
    session_id        TEXT,
    limit_usd         REAL NOT NULL,
    spent_usd         REAL NOT NULL DEFAULT 0,
    warning_threshold REAL NOT NULL DEFAULT 0.8,
    hard_stop_enabled INTEGER NOT NULL DEFAULT 0,
    reset_period      TEXT NOT NULL DEFAULT 'session',
    last_reset        TEXT NOT NULL,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS approval_policies (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL,
    matcher     TEXT NOT NULL,
    action      TEXT NOT NULL,
    priority    INTEGER NOT NULL DEFAULT 0,
    conditions  TEXT,
    enabled     INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS approval_queue (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id      TEXT NOT NULL,
    request_type    TEXT NOT NULL,
    request_details TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    policy_id       INTEGER,
    decided_at      TEXT,
    decided_by      TEXT,
    created_at      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_budgets_project ON budgets(project_path);
CREATE INDEX IF NOT EXISTS idx_budgets_session ON budgets(session_id);
CREATE INDEX IF NOT EXISTS idx_approval_queue_status ON approval_queue(status);
CREATE INDEX IF NOT EXISTS idx_approval_queue_session ON approval_queue(session_id);
CREATE INDEX IF NOT EXISTS idx_approval_policies_enabled ON approval_policies(enabled);
"""

_POLICY_COLUMNS = {"name", "matcher", "action", "priority", "conditions", "enabled"}


def default_db_path() -> str:
    """Return the default SQLite database path."""
    home = os.path.expanduser("~")
    plyra_dir = os.path.join(home, ".plyra")
    os.makedirs(plyra_dir, exist_ok=True)
    return os.path.join(plyra_dir, "governor.db")


def _ts(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class SQLiteStore:
    """
    ``GovernanceStore`` implementation on SQLite.

    Each call opens its own connection, so the store can be shared across
    threads. ``":memory:"`` keeps one shared connection instead, since an
    in-memory database disappears with the connection that created it.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or default_db_path()
        self._sync_lock = threading.RLock()
        self._shared_conn: sqlite3.Connection | None = None

        if self._db_path == ":memory:":
            self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._shared_conn.row_factory = sqlite3.Row
        else:
            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self._init_db()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._connection() as conn:
            conn.executescript(_SCHEMA_SQL)
        logger.debug("Governance store ready at %s", self._db_path)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, committing on success and wrapping sqlite errors."""
        with self._sync_lock:
            conn = self._shared_conn
            owned = conn is None
            try:
                if conn is None:
                    conn = sqlite3.connect(self._db_path)
                    conn.row_factory = sqlite3.Row
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                if conn is not None:
                    conn.rollback()
                logger.error("Governance store failure (%s): %s", self._db_path, exc)
                raise StorageError(f"Governance store unavailable: {exc}") from exc
            finally:
                if owned and conn is not None:
                    conn.close()

    def close(self) -> None:
        """Close the shared in-memory connection, if any."""
        with self._sync_lock:
            if self._shared_conn is not None:
                self._shared_conn.close()
                self._shared_conn = None

    # ── Budgets ──────────────────────────────────────────────────

    @staticmethod
    def _row_to_budget(row: sqlite3.Row) -> Budget:
        return Budget(
            id=row["id"],
            project_path=row["project_path"],
            session_id=row["session_id"],
            limit_usd=row["limit_usd"],
            spent_usd=row["spent_usd"],
            warning_threshold=row["warning_threshold"],
            hard_stop_enabled=bool(row["hard_stop_enabled"]),
            reset_period=ResetPeriod(row["reset_period"]),
            last_reset=_parse_ts(row["last_reset"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def upsert_budget(
        self,
        *,
        limit_usd: float,
        project_path: str | None,
        session_id: str | None,
        warning_threshold: float,
        hard_stop_enabled: bool,
        reset_period: str,
    ) -> Budget:
        """
        Create the budget for a scope, or update its settings in place.

        An existing budget keeps its spent total and reset stamp.
        """
        now = _ts(utcnow())
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id FROM budgets WHERE project_path IS ? AND session_id IS ?",
                (project_path, session_id),
            ).fetchone()
            if row is not None:
                budget_id = row["id"]
                conn.execute(
                    """UPDATE budgets SET
                        limit_usd = ?, warning_threshold = ?,
                        hard_stop_enabled = ?, reset_period = ?, updated_at = ?
                    WHERE id = ?""",
                    (
                        limit_usd,
                        warning_threshold,
                        int(hard_stop_enabled),
                        reset_period,
                        now,
                        budget_id,
                    ),
                )
            else:
                cursor = conn.execute(
                    """INSERT INTO budgets (
                        project_path, session_id, limit_usd, spent_usd,
                        warning_threshold, hard_stop_enabled, reset_period,
                        last_reset, created_at, updated_at
                    ) VALUES (?, ?, ?, 0, ?, ?, ?, ?, ?, ?)""",
                    (
                        project_path,
                        session_id,
                        limit_usd,
                        warning_threshold,
                        int(hard_stop_enabled),
                        reset_period,
                        now,
                        now,
                        now,
                    ),
                )
                budget_id = cursor.lastrowid

        budget = self.get_budget(budget_id)
        if budget is None:
            raise ConsistencyError(f"Budget {budget_id} missing right after upsert")
        return budget

    def get_budget(self, budget_id: int) -> Budget | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM budgets WHERE id = ?", (budget_id,)
            ).fetchone()
        return self._row_to_budget(row) if row else None

    def find_budget(
        self, project_path: str | None, session_id: str | None
    ) -> Budget | None:
        """Return the budget for exactly this scope."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM budgets WHERE project_path IS ? AND session_id IS ?",
                (project_path, session_id),
            ).fetchone()
        return self._row_to_budget(row) if row else None

    def resolve_budget(
        self, project_path: str | None, session_id: str | None
    ) -> Budget | None:
        """Return the most specific budget: session, then project, then global."""
        with self._connection() as conn:
            row = None
            if session_id:
                row = conn.execute(
                    "SELECT * FROM budgets WHERE session_id = ? ORDER BY id LIMIT 1",
                    (session_id,),
                ).fetchone()
            if row is None and project_path:
                row = conn.execute(
                    "SELECT * FROM budgets WHERE project_path = ? "
                    "AND session_id IS NULL",
                    (project_path,),
                ).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT * FROM budgets "
                    "WHERE project_path IS NULL AND session_id IS NULL"
                ).fetchone()
        return self._row_to_budget(row) if row else None

    def list_budgets(self) -> list[Budget]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM budgets ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [self._row_to_budget(r) for r in rows]

    def add_budget_spent(self, budget_id: int, amount_usd: float) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE budgets SET spent_usd = spent_usd + ?, updated_at = ? "
                "WHERE id = ?",
                (amount_usd, _ts(utcnow()), budget_id),
            )

    def reset_budget_spent(self, budget_id: int, reset_at: datetime) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE budgets SET spent_usd = 0, last_reset = ?, updated_at = ? "
                "WHERE id = ?",
                (_ts(reset_at), _ts(utcnow()), budget_id),
            )
            return cursor.rowcount > 0

    def delete_budget(self, budget_id: int) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM budgets WHERE id = ?", (budget_id,))
            return cursor.rowcount > 0

    # ── Policies ─────────────────────────────────────────────────

    @staticmethod
    def _row_to_policy(row: sqlite3.Row) -> ApprovalPolicy:
        conditions = None
        if row["conditions"]:
            try:
                conditions = PolicyConditions.from_dict(json.loads(row["conditions"]))
            except (json.JSONDecodeError, ValueError) as exc:
                logger.warning(
                    "Ignoring unreadable conditions on policy %s: %s", row["id"], exc
                )
        return ApprovalPolicy(
            id=row["id"],
            name=row["name"],
            matcher=row["matcher"],
            action=PolicyAction(row["action"]),
            priority=row["priority"],
            enabled=bool(row["enabled"]),
            conditions=conditions,
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def insert_policy(
        self,
        *,
        name: str,
        matcher: str,
        action: PolicyAction,
        priority: int,
        conditions: PolicyConditions | None,
        enabled: bool,
    ) -> ApprovalPolicy:
        now = _ts(utcnow())
        with self._connection() as conn:
            cursor = conn.execute(
                """INSERT INTO approval_policies (
                    name, matcher, action, priority, conditions, enabled,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    name,
                    matcher,
                    action.value,
                    priority,
                    json.dumps(conditions.to_dict()) if conditions else None,
                    int(enabled),
                    now,
                    now,
                ),
            )
            policy_id = cursor.lastrowid

        policy = self.get_policy(policy_id)
        if policy is None:
            raise ConsistencyError(f"Policy {policy_id} missing right after insert")
        return policy

    def get_policy(self, policy_id: int) -> ApprovalPolicy | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM approval_policies WHERE id = ?", (policy_id,)
            ).fetchone()
        return self._row_to_policy(row) if row else None

    def list_policies(self, enabled_only: bool = False) -> list[ApprovalPolicy]:
        """Return policies ordered by descending priority, then by id."""
        query = "SELECT * FROM approval_policies"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY priority DESC, id ASC"
        with self._connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_policy(r) for r in rows]

    def update_policy(self, policy_id: int, fields: dict[str, Any]) -> bool:
        """
        Apply a partial update.

        ``fields`` uses domain values: ``PolicyAction`` for action,
        ``PolicyConditions | None`` for conditions, ``bool`` for enabled.
        """
        unknown = set(fields) - _POLICY_COLUMNS
        if unknown:
            raise ValueError(f"Unknown policy fields: {sorted(unknown)}")

        assignments: list[str] = []
        values: list[Any] = []
        for column, value in fields.items():
            if column == "action":
                value = PolicyAction(value).value
            elif column == "conditions":
                value = json.dumps(value.to_dict()) if value else None
            elif column == "enabled":
                value = int(bool(value))
            assignments.append(f"{column} = ?")
            values.append(value)
        assignments.append("updated_at = ?")
        values.append(_ts(utcnow()))
        values.append(policy_id)

        with self._connection() as conn:
            cursor = conn.execute(
                f"UPDATE approval_policies SET {', '.join(assignments)} WHERE id = ?",
                values,
            )
            return cursor.rowcount > 0

    def delete_policy(self, policy_id: int) -> bool:
        with self._connection() as conn:
            conn.execute(
                "UPDATE approval_queue SET policy_id = NULL WHERE policy_id = ?",
                (policy_id,),
            )
            cursor = conn.execute(
                "DELETE FROM approval_policies WHERE id = ?", (policy_id,)
            )
            return cursor.rowcount > 0

    # ── Approval Queue ───────────────────────────────────────────

    @staticmethod
    def _row_to_queue_item(row: sqlite3.Row) -> ApprovalQueueItem:
        return ApprovalQueueItem(
            id=row["id"],
            session_id=row["session_id"],
            request_type=row["request_type"],
            request_details=row["request_details"],
            status=QueueStatus(row["status"]),
            decided_by=DecidedBy(row["decided_by"]) if row["decided_by"] else None,
            policy_id=row["policy_id"],
            created_at=_parse_ts(row["created_at"]),
            decided_at=_parse_ts(row["decided_at"]),
        )

    def insert_queue_item(
        self,
        *,
        session_id: str,
        request_type: str,
        request_details: str,
        policy_id: int | None,
    ) -> ApprovalQueueItem:
        with self._connection() as conn:
            cursor = conn.execute(
                """INSERT INTO approval_queue (
                    session_id, request_type, request_details, status,
                    policy_id, created_at
                ) VALUES (?, ?, ?, 'pending', ?, ?)""",
                (session_id, request_type, request_details, policy_id, _ts(utcnow())),
            )
            item_id = cursor.lastrowid

        item = self.get_queue_item(item_id)
        if item is None:
            raise ConsistencyError(
                f"Approval queue item {item_id} missing right after insert"
            )
        return item

    def get_queue_item(self, item_id: int) -> ApprovalQueueItem | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM approval_queue WHERE id = ?", (item_id,)
            ).fetchone()
        return self._row_to_queue_item(row) if row else None

    def list_queue_items(
        self,
        status: QueueStatus | None = None,
        session_id: str | None = None,
    ) -> list[ApprovalQueueItem]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if session_id is not None:
            clauses.append("session_id = ?")
            params.append(session_id)

        query = "SELECT * FROM approval_queue"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC, id ASC"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_queue_item(r) for r in rows]

    def decide_queue_item(
        self,
        item_id: int,
        status: QueueStatus,
        decided_by: DecidedBy,
        decided_at: datetime,
    ) -> bool:
        """
        Move a pending item to a terminal status.

        Returns False when the item is missing or no longer pending; the
        stored decision is never overwritten.
        """
        with self._connection() as conn:
            cursor = conn.execute(
                """UPDATE approval_queue
                SET status = ?, decided_by = ?, decided_at = ?
                WHERE id = ? AND status = 'pending'""",
                (status.value, decided_by.value, _ts(decided_at), item_id),
            )
            return cursor.rowcount > 0
