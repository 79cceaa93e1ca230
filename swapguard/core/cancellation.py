"""
Cancellation
~~~~~~~~~~~~

Cooperative cancellation for transactions. Signals are routed into a
CancellationToken instead of unwinding the stack, so the controller can
finish the in-flight step and take the rollback path deliberately.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterable
from types import FrameType
from typing import Any

from swapguard.exceptions import TransactionInterruptedError

__all__ = ["CancellationToken", "SignalTrap"]

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Thread-safe, one-way cancellation flag.

    Once cancelled, a token stays cancelled; the first reason wins.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""
        self._lock = threading.Lock()

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation."""
        with self._lock:
            if not self._event.is_set():
                self._reason = reason
                self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout expires."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, partial: list[Any] | None = None) -> None:
        """
        Raise if cancellation was requested.

        Raises:
            TransactionInterruptedError: With the cancel reason and any
                partial results supplied by the caller.
        """
        if self.cancelled:
            raise TransactionInterruptedError(
                f"Interrupted: {self._reason}",
                reason=self._reason,
                partial=partial,
            )

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self.cancelled} reason={self._reason!r}>"


class SignalTrap:
    """
    Context manager that cancels a token when a signal arrives.

    Previous handlers are restored on exit. Handlers can only be installed
    from the main thread; elsewhere the trap is a no-op and logs a warning.

    Usage::

        token = CancellationToken()
        with SignalTrap(token, ["SIGINT", "SIGTERM"]):
            controller.run(..., token=token)
    """

    def __init__(
        self,
        token: CancellationToken,
        signals: Iterable[str | int] = ("SIGINT", "SIGTERM", "SIGHUP"),
    ) -> None:
        self._token = token
        self._signals = [self._resolve(s) for s in signals]
        self._previous: dict[int, Any] = {}
        self.received: list[str] = []

    @staticmethod
    def _resolve(sig: str | int) -> int:
        if isinstance(sig, int):
            return sig
        try:
            return int(getattr(signal, sig.upper()))
        except AttributeError:
            raise ValueError(f"Unknown signal: {sig!r}") from None

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        self.received.append(name)
        logger.warning("Received %s, cancelling transaction", name)
        self._token.cancel(f"signal {name}")

    def __enter__(self) -> SignalTrap:
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Signal handlers not installed: not running in main thread")
            return self
        for signum in self._signals:
            self._previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle)
        return self

    def __exit__(self, *exc_info: object) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous.clear()
