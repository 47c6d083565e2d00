"""
Dashboard SSE
~~~~~~~~~~~~~

Server-Sent Events generator for the live decision feed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from plyra_governor.observability.audit_log import DecisionLog

__all__ = ["sse_event_generator"]

logger = logging.getLogger(__name__)


async def sse_event_generator(
    decision_log: DecisionLog,
    *,
    poll_interval: float = 1.0,
    keepalive_interval: float = 15.0,
) -> AsyncGenerator[dict[str, str], None]:
    """Yield SSE-compatible dicts for ``sse-starlette``.

    Polls the decision log for records it has not sent yet and sends a
    keepalive comment every *keepalive_interval* seconds when idle.
    Records already in the log when the stream opens are not replayed.
    """
    seen = {record.id for record in decision_log.query()}
    since_keepalive = 0.0

    while True:
        emitted = False
        for record in decision_log.query():
            if record.id in seen:
                continue
            seen.add(record.id)
            yield {
                "event": "decision",
                "id": record.id,
                "data": json.dumps(record.to_dict(), default=str),
            }
            emitted = True

        if emitted:
            since_keepalive = 0.0
        else:
            since_keepalive += poll_interval
            if since_keepalive >= keepalive_interval:
                yield {"comment": "ping"}
                since_keepalive = 0.0

        await asyncio.sleep(poll_interval)
