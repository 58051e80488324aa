"""Epoch-scoped progress tracking for balance fetch cycles."""

import logging
import math
from collections.abc import Callable

from crosschain_portfolio.core.models import ProgressState, ProgressStatus

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressState], None]


def compute_percentage(processed: int, total: int) -> int:
    """
    Compute a completion percentage rounded half-up.

    Parameters
    ----------
    processed : int
        Completed work units
    total : int
        Scheduled work units

    Returns
    -------
    int
        Percentage in ``[0, 100]``; 100 when nothing was scheduled

    """
    if total <= 0:
        return 100
    return min(100, math.floor(processed * 100 / total + 0.5))


class ProgressTracker:
    """
    Tracks processed and total token counts for the current fetch epoch.

    ``total`` is fixed by ``begin`` and never changes within an epoch.
    ``advance`` calls carrying any other epoch are ignored, so late
    completions from a superseded cycle cannot move the counters.

    """

    def __init__(self) -> None:
        self._epoch = 0
        self._status = ProgressStatus.IDLE
        self._processed = 0
        self._total = 0
        self._listeners: list[ProgressListener] = []

    @property
    def epoch(self) -> int:
        """Epoch the tracker is currently scoped to."""
        return self._epoch

    @property
    def state(self) -> ProgressState:
        """Immutable snapshot of the current progress."""
        percentage = compute_percentage(self._processed, self._total) if self._status is not ProgressStatus.IDLE else 0
        return ProgressState(
            epoch=self._epoch,
            status=self._status,
            processed=self._processed,
            total=self._total,
            percentage=percentage,
        )

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """
        Register a listener called with every state change.

        Returns
        -------
        Callable[[], None]
            Function removing the listener

        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset(self, epoch: int) -> None:
        """Return to Idle and scope the tracker to a new epoch."""
        if epoch < self._epoch:
            msg = f"Cannot reset to epoch {epoch}, tracker is already at epoch {self._epoch}"
            raise ValueError(msg)
        self._epoch = epoch
        self._status = ProgressStatus.IDLE
        self._processed = 0
        self._total = 0
        self._notify()

    def begin(self, epoch: int, total: int) -> bool:
        """
        Fix the total for an epoch and enter Fetching.

        Parameters
        ----------
        epoch : int
            Epoch the schedule belongs to
        total : int
            Sum of token counts across all scheduled batches

        Returns
        -------
        bool
            False if the epoch is stale or its total was already fixed

        """
        if epoch != self._epoch:
            logger.debug("Ignoring begin for stale epoch %d (current %d)", epoch, self._epoch)
            return False
        if self._status is not ProgressStatus.IDLE:
            logger.debug("Total for epoch %d already fixed at %d", epoch, self._total)
            return False

        self._total = max(0, total)
        self._processed = 0
        self._status = ProgressStatus.FETCHING if self._total > 0 else ProgressStatus.COMPLETE
        self._notify()
        return True

    def advance(self, epoch: int, count: int) -> bool:
        """
        Record a batch's terminal outcome.

        Parameters
        ----------
        epoch : int
            Epoch captured when the batch was dispatched
        count : int
            Number of tokens in the batch

        Returns
        -------
        bool
            True if the contribution was applied

        """
        if epoch != self._epoch or self._status is not ProgressStatus.FETCHING:
            logger.debug("Discarding progress of %d tokens from epoch %d", count, epoch)
            return False

        processed = self._processed + max(0, count)
        if processed > self._total:
            logger.warning("Progress overflow in epoch %d: %d > %d", epoch, processed, self._total)
            processed = self._total

        self._processed = processed
        if self._processed == self._total:
            self._status = ProgressStatus.COMPLETE
        self._notify()
        return True

    def _notify(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            listener(state)
