"""
Decision Log
~~~~~~~~~~~~

Bounded in-memory record of every admission decision, forwarded to the
configured exporters.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from plyra_governor.core.enums import Decision, DecisionSource
from plyra_governor.core.models import utcnow

__all__ = ["DecisionRecord", "DecisionFilter", "DecisionLog"]

logger = logging.getLogger(__name__)


@dataclass
class DecisionRecord:
    """
    One admission decision, as returned to the lifecycle-event caller.

    ``source`` says which stage decided; ``budget_unrestricted`` is True
    when no budget applied to the scope, so a pass-through by absence of
    a budget is never mistaken for a budget that had room.
    """

    event_type: str
    session_id: str
    decision: Decision
    source: DecisionSource
    reason: str | None = None
    project_path: str | None = None
    tool_name: str | None = None
    estimated_cost_usd: float = 0.0
    budget_id: int | None = None
    budget_unrestricted: bool = True
    remaining_usd: float | None = None
    warning_message: str | None = None
    policy_id: int | None = None
    policy_name: str | None = None
    queue_item_id: int | None = None
    duration_ms: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        remaining = self.remaining_usd
        if remaining is not None and math.isinf(remaining):
            remaining = None
        return {
            "id": self.id,
            "event_type": self.event_type,
            "session_id": self.session_id,
            "project_path": self.project_path,
            "tool_name": self.tool_name,
            "decision": self.decision.value,
            "source": self.source.value,
            "reason": self.reason,
            "estimated_cost_usd": self.estimated_cost_usd,
            "budget_id": self.budget_id,
            "budget_unrestricted": self.budget_unrestricted,
            "remaining_usd": remaining,
            "warning_message": self.warning_message,
            "policy_id": self.policy_id,
            "policy_name": self.policy_name,
            "queue_item_id": self.queue_item_id,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DecisionFilter:
    """Filter criteria for querying the decision log."""

    session_id: str | None = None
    project_path: str | None = None
    tool_name: str | None = None
    decision: Decision | None = None
    source: DecisionSource | None = None
    from_time: datetime | None = None
    to_time: datetime | None = None
    limit: int = 100


class DecisionLog:
    """
    In-memory decision log with filtering and export support.

    The oldest records are evicted once ``max_entries`` is exceeded.
    Exporter and listener failures are logged and never reach the
    caller whose decision is being recorded.
    """

    def __init__(self, max_entries: int = 10000) -> None:
        self._entries: list[DecisionRecord] = []
        self._max_entries = max_entries
        self._sync_lock = threading.RLock()
        self._exporters: list[Any] = []
        self._listeners: list[Callable[[DecisionRecord], None]] = []

    def add_exporter(self, exporter: Any) -> None:
        """Add an exporter with an ``export(record)`` method."""
        self._exporters.append(exporter)

    def add_listener(
        self, listener: Callable[[DecisionRecord], None]
    ) -> Callable[[], None]:
        """Call ``listener`` for every new record. Returns an unsubscribe callable."""
        with self._sync_lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._sync_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    def write(self, record: DecisionRecord) -> None:
        with self._sync_lock:
            self._entries.append(record)
            if len(self._entries) > self._max_entries:
                self._entries = self._entries[-self._max_entries :]
            listeners = list(self._listeners)

        for exporter in self._exporters:
            try:
                exporter.export(record)
            except Exception as exc:
                logger.error(
                    "Exporter %s failed: %s",
                    type(exporter).__name__,
                    exc,
                )
        for listener in listeners:
            try:
                listener(record)
            except Exception:
                logger.exception("Decision listener %r failed", listener)

    def query(self, filters: DecisionFilter | None = None) -> list[DecisionRecord]:
        """
        Query the log, oldest first.

        Args:
            filters: Optional filter criteria.

        Returns:
            Matching records, at most ``filters.limit`` of the most recent.
        """
        with self._sync_lock:
            entries = list(self._entries)
        if filters is None:
            return entries

        results: list[DecisionRecord] = []
        for record in reversed(entries):
            if filters.session_id and record.session_id != filters.session_id:
                continue
            if filters.project_path and record.project_path != filters.project_path:
                continue
            if filters.tool_name and record.tool_name != filters.tool_name:
                continue
            if filters.decision and record.decision != filters.decision:
                continue
            if filters.source and record.source != filters.source:
                continue
            if filters.from_time and record.timestamp < filters.from_time:
                continue
            if filters.to_time and record.timestamp > filters.to_time:
                continue
            results.append(record)
            if len(results) >= filters.limit:
                break

        results.reverse()
        return results

    def recent(self, limit: int = 50) -> list[DecisionRecord]:
        """Return the ``limit`` most recent records, newest first."""
        with self._sync_lock:
            return list(reversed(self._entries[-limit:])) if limit > 0 else []

    def clear(self) -> None:
        with self._sync_lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
