"""Decision record exporters."""

from plyra_governor.observability.exporters.stdout_exporter import StdoutExporter

__all__ = ["StdoutExporter"]
