"""Tests for cancellation tokens and the signal trap."""

import os
import signal
import threading

import pytest

from swapguard import CancellationToken, SignalTrap
from swapguard.exceptions import TransactionInterruptedError


class TestCancellationToken:
    """Tests for the cancellation token."""

    def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert not token.cancelled
        assert token.reason == ""
        token.raise_if_cancelled()

    def test_first_reason_wins(self):
        token = CancellationToken()
        token.cancel("signal SIGTERM")
        token.cancel("signal SIGINT")
        assert token.cancelled
        assert token.reason == "signal SIGTERM"

    def test_raise_if_cancelled_carries_partial(self):
        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(TransactionInterruptedError) as exc_info:
            token.raise_if_cancelled(partial=["a", "b"])
        assert exc_info.value.reason == "stop"
        assert exc_info.value.partial == ["a", "b"]

    def test_wait(self):
        token = CancellationToken()
        assert token.wait(0.01) is False
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(5) is True


class TestSignalTrap:
    """Tests for routing signals into a token."""

    def test_signal_cancels_token(self):
        token = CancellationToken()
        with SignalTrap(token, ["SIGUSR1"]) as trap:
            os.kill(os.getpid(), signal.SIGUSR1)
            assert token.wait(5)
        assert token.reason == "signal SIGUSR1"
        assert trap.received == ["SIGUSR1"]

    def test_previous_handler_restored(self):
        calls = []

        def previous(signum, frame):
            calls.append(signum)

        old = signal.signal(signal.SIGUSR2, previous)
        try:
            with SignalTrap(CancellationToken(), ["SIGUSR2"]):
                assert signal.getsignal(signal.SIGUSR2) is not previous
            assert signal.getsignal(signal.SIGUSR2) is previous
        finally:
            signal.signal(signal.SIGUSR2, old)

    def test_accepts_signal_numbers(self):
        token = CancellationToken()
        with SignalTrap(token, [signal.SIGUSR1]):
            os.kill(os.getpid(), signal.SIGUSR1)
            assert token.wait(5)

    def test_unknown_signal_name(self):
        with pytest.raises(ValueError):
            SignalTrap(CancellationToken(), ["SIGNOPE"])

    def test_noop_outside_main_thread(self):
        errors = []
        before = signal.getsignal(signal.SIGUSR1)

        def run():
            try:
                with SignalTrap(CancellationToken(), ["SIGUSR1"]):
                    errors.append(signal.getsignal(signal.SIGUSR1) is before)
            except Exception as exc:
                errors.append(exc)

        thread = threading.Thread(target=run)
        thread.start()
        thread.join()
        assert errors == [True]
