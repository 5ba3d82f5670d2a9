"""
Ordered record of reversible system changes.

Each forward provisioning step records an action only after its change has
succeeded. The undo callable captures everything needed to reverse that one
change. ``unwind()`` runs the undos newest first, keeps going when one fails,
and runs at most once per ledger.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List

from clat.errors import LedgerStateError


class LedgerState(Enum):
    EMPTY = "empty"
    RECORDING = "recording"
    DRAINING = "draining"
    DRAINED = "drained"


@dataclass(frozen=True)
class ProvisioningAction:
    """One applied change and how to revert it."""
    index: int
    description: str
    undo: Callable[[], None]

    def __str__(self):
        return f"#{self.index} {self.description}"


class ProvisioningLedger:
    """Append-only log of applied changes, drained in LIFO order exactly once."""

    def __init__(self):
        self._actions: List[ProvisioningAction] = []
        self.state = LedgerState.EMPTY
        self.logger = logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[ProvisioningAction]:
        return iter(list(self._actions))

    def __enter__(self) -> "ProvisioningLedger":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unwind()
        return False

    def record(self, description: str, undo: Callable[[], None]) -> ProvisioningAction:
        """
        Record a change that has already been applied.

        Args:
            description: Human-readable description of the change.
            undo: Callable that reverts exactly this change.

        Returns:
            The recorded action.

        Raises:
            LedgerStateError: the ledger is being or has been unwound.
        """
        if self.state not in (LedgerState.EMPTY, LedgerState.RECORDING):
            raise LedgerStateError(
                f"Cannot record '{description}': ledger is {self.state.value}"
            )
        action = ProvisioningAction(len(self._actions), description, undo)
        self._actions.append(action)
        self.state = LedgerState.RECORDING
        self.logger.debug(f"Recorded {action}")
        return action

    def unwind(self) -> List[ProvisioningAction]:
        """
        Revert every recorded change, newest first.

        A failing undo is logged as a warning and the remaining ones still run.
        Calling this again after the first time does nothing.

        Returns:
            The actions whose undo failed.
        """
        if self.state in (LedgerState.DRAINING, LedgerState.DRAINED):
            self.logger.debug(f"Ledger already {self.state.value}, nothing to unwind")
            return []

        self.state = LedgerState.DRAINING
        failed: List[ProvisioningAction] = []

        if self._actions:
            self.logger.info(f"Rolling back {len(self._actions)} change(s)")

        while self._actions:
            action = self._actions.pop()
            self.logger.info(f"Reverting: {action.description}")
            try:
                action.undo()
            except Exception as e:
                self.logger.warning(f"Failed to revert '{action.description}': {e}")
                failed.append(action)

        self.state = LedgerState.DRAINED
        if failed:
            self.logger.warning(f"{len(failed)} change(s) could not be reverted")
        return failed
