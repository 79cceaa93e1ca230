"""
Event Log
~~~~~~~~~

Structured log of transaction events. Every state transition and step
boundary produces a TransitionEvent that is kept in memory, forwarded
to the configured exporters, and mirrored to the stdlib logger.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from swapguard.core.state import Severity, TransactionState

__all__ = ["EventLog", "TransitionEvent"]

logger = logging.getLogger(__name__)


@dataclass
class TransitionEvent:
    """
    One line of the side channel consumed by the CLI.

    Attributes:
        transaction_id: The transaction that produced the event.
        severity: INFO, WARN, ERROR or SUCCESS.
        message: Human-readable message.
        state: Controller state after the event, if it was a transition.
        step: Step or criterion name, if relevant.
        details: Extra structured data.
        timestamp: When the event was produced.
    """

    transaction_id: str
    severity: Severity
    message: str
    state: TransactionState | None = None
    step: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "transaction_id": self.transaction_id,
            "severity": self.severity.value,
            "message": self.message,
            "state": self.state.value if self.state else None,
            "step": self.step,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class EventLog:
    """
    In-memory event log with filtering and export support.

    Exporter failures are logged and never interrupt a transaction.
    """

    def __init__(self, max_entries: int = 10000) -> None:
        self._entries: list[TransitionEvent] = []
        self._max_entries = max_entries
        self._lock = threading.RLock()
        self._exporters: list[Any] = []

    def add_exporter(self, exporter: Any) -> None:
        """Add an exporter to receive events."""
        self._exporters.append(exporter)

    @property
    def exporters(self) -> list[Any]:
        return list(self._exporters)

    def clear_exporters(self) -> None:
        self._exporters.clear()

    def write(self, event: TransitionEvent) -> None:
        """Record an event and forward it to exporters."""
        with self._lock:
            self._entries.append(event)
            if len(self._entries) > self._max_entries:
                self._entries = self._entries[-self._max_entries :]

        logger.log(event.severity.log_level(), "[%s] %s", event.severity, event.message)

        for exporter in self._exporters:
            try:
                exporter.export(event)
            except Exception as exc:
                logger.error(
                    "Exporter %s failed: %s",
                    type(exporter).__name__,
                    exc,
                )

    def emit(
        self,
        transaction_id: str,
        severity: Severity,
        message: str,
        **kwargs: Any,
    ) -> TransitionEvent:
        """Build and write an event in one call."""
        event = TransitionEvent(
            transaction_id=transaction_id,
            severity=severity,
            message=message,
            **kwargs,
        )
        self.write(event)
        return event

    def query(
        self,
        transaction_id: str | None = None,
        severity: Severity | None = None,
        limit: int | None = None,
    ) -> list[TransitionEvent]:
        """Return events matching the filters, oldest first."""
        results: list[TransitionEvent] = []
        with self._lock:
            for event in self._entries:
                if transaction_id and event.transaction_id != transaction_id:
                    continue
                if severity and event.severity != severity:
                    continue
                results.append(event)
                if limit is not None and len(results) >= limit:
                    break
        return results

    def clear(self) -> None:
        """Clear all events."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
