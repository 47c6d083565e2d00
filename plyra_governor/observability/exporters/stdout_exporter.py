"""
Stdout Exporter
~~~~~~~~~~~~~~~

Writes decision records as JSON lines to stdout.
"""

from __future__ import annotations

import json
import sys
from typing import TextIO

from plyra_governor.observability.audit_log import DecisionRecord

__all__ = ["StdoutExporter"]


class StdoutExporter:
    """
    Writes each decision record as one JSON line, ready to pipe into a
    log aggregator.
    """

    def __init__(self, stream: TextIO | None = None, pretty: bool = False) -> None:
        self._stream = stream or sys.stdout
        self._pretty = pretty

    def export(self, record: DecisionRecord) -> None:
        data = record.to_dict()
        indent = 2 if self._pretty else None
        self._stream.write(json.dumps(data, indent=indent, default=str) + "\n")
        self._stream.flush()
