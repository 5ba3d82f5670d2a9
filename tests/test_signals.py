"""Tests for the signal deferral scope."""

import os
import signal

import pytest

from clat.signals import deferred_signals


def test_signals_are_recorded_not_fatal():
    forwarded = []
    with deferred_signals(on_signal=forwarded.append) as received:
        os.kill(os.getpid(), signal.SIGINT)
        os.kill(os.getpid(), signal.SIGHUP)

    assert received.received == [signal.SIGINT, signal.SIGHUP]
    assert received.names() == ["SIGINT", "SIGHUP"]
    assert forwarded == [signal.SIGINT, signal.SIGHUP]


def test_previous_handlers_restored_on_error():
    before = {s: signal.getsignal(s) for s in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)}

    with pytest.raises(RuntimeError):
        with deferred_signals():
            assert signal.getsignal(signal.SIGTERM) is not before[signal.SIGTERM]
            raise RuntimeError("wait failed")

    for signum, handler in before.items():
        assert signal.getsignal(signum) is handler


def test_nothing_received():
    with deferred_signals() as received:
        pass
    assert not received
