"""Scoped deferral of termination signals while the translator runs."""

import logging
import signal
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFERRED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class DeferredSignals:
    """Signals received while the scope was active."""

    def __init__(self):
        self.received: List[int] = []

    def __bool__(self):
        return bool(self.received)

    def names(self) -> List[str]:
        return [signal.Signals(signum).name for signum in self.received]


@contextmanager
def deferred_signals(
    signums: Sequence[int] = DEFERRED_SIGNALS,
    on_signal: Optional[Callable[[int], None]] = None
) -> Iterator[DeferredSignals]:
    """
    Catch ``signums`` instead of letting them terminate the process.

    Received signals are recorded and passed to ``on_signal`` (typically to
    forward them to the supervised child). The previous handlers are restored
    when the scope exits, however it exits. Child processes started inside the
    scope get the default dispositions, since caught signals reset on exec.
    """
    state = DeferredSignals()

    def handler(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, deferring until the translator exits")
        state.received.append(signum)
        if on_signal is not None:
            on_signal(signum)

    previous = {}
    try:
        for signum in signums:
            previous[signum] = signal.signal(signum, handler)
        yield state
    finally:
        for signum, old_handler in previous.items():
            signal.signal(signum, old_handler)
