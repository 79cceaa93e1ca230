"""
Stdout Exporters
~~~~~~~~~~~~~~~~

Write transaction events to a stream, either as plain severity-tagged
lines for a terminal or as JSON lines for log aggregators.
"""

from __future__ import annotations

import json
import sys

from swapguard.observability.event_log import TransitionEvent

__all__ = ["ConsoleExporter", "JsonLinesExporter"]


class ConsoleExporter:
    """
    Writes ``[SEVERITY] message`` lines.

    Errors go to stderr unless an explicit stream is given.
    """

    def __init__(self, stream: object | None = None) -> None:
        self._stream = stream

    def export(self, event: TransitionEvent) -> None:
        stream = self._stream
        if stream is None:
            stream = sys.stderr if event.severity == "ERROR" else sys.stdout
        stream.write(f"[{event.severity}] {event.message}\n")  # type: ignore[union-attr]
        stream.flush()  # type: ignore[union-attr]


class JsonLinesExporter:
    """
    Writes each event as a single JSON line.

    Each event is serialized on one line for easy piping to log aggregators.
    """

    def __init__(self, stream: object | None = None, pretty: bool = False) -> None:
        self._stream = stream or sys.stdout
        self._pretty = pretty

    def export(self, event: TransitionEvent) -> None:
        """Write the event as a JSON line to the output stream."""
        data = event.to_dict()
        if self._pretty:
            line = json.dumps(data, indent=2, default=str)
        else:
            line = json.dumps(data, default=str)
        self._stream.write(line + "\n")  # type: ignore[union-attr]
        self._stream.flush()  # type: ignore[union-attr]
