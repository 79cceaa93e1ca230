"""swapguard observability — event log, metrics, and exporters."""

from swapguard.observability.event_log import EventLog, TransitionEvent
from swapguard.observability.exporters import ConsoleExporter, JsonLinesExporter
from swapguard.observability.metrics import MetricsCollector

__all__ = [
    "EventLog",
    "TransitionEvent",
    "MetricsCollector",
    "ConsoleExporter",
    "JsonLinesExporter",
]
