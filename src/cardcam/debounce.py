"""Temporal debouncing of per-frame verdicts into a one-shot capture event.

A single good frame is not enough to capture: the card has to stay valid and
aligned for ``min_consecutive`` processed frames in a row.  Once the run is
long enough the debouncer fires exactly once and stays fired until it is
explicitly re-armed.

States:
    IDLE          - counter is 0
    ACCUMULATING  - counter in [1, min_consecutive)
    FIRED         - capture triggered; updates ignored until rearm()
"""

from __future__ import annotations

import logging
from enum import Enum

log = logging.getLogger(__name__)


class DebounceState(Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FIRED = "fired"


class ResetPolicy(Enum):
    """What a bad frame does to the counter."""

    HARD = "hard"  # counter -> 0
    SOFT_DECAY = "soft_decay"  # counter -> max(0, counter - 1)


class CaptureDebouncer:
    """Counts consecutive good frames and fires once per accumulation run.

    Args:
        min_consecutive: Good frames required before firing (>= 1).
        alignment_threshold: A valid frame only counts when its alignment
            score is strictly above this value.
        policy: Counter behaviour on a bad frame.
    """

    def __init__(
        self,
        min_consecutive: int,
        alignment_threshold: float = 0.0,
        policy: ResetPolicy = ResetPolicy.HARD,
    ):
        if min_consecutive < 1:
            raise ValueError(f"min_consecutive must be >= 1, got {min_consecutive}")
        self.min_consecutive = min_consecutive
        self.alignment_threshold = alignment_threshold
        self.policy = policy
        self.counter = 0
        self._fired = False

    @property
    def state(self) -> DebounceState:
        if self._fired:
            return DebounceState.FIRED
        if self.counter == 0:
            return DebounceState.IDLE
        return DebounceState.ACCUMULATING

    @property
    def progress(self) -> float:
        """Fraction of the run completed, 0.0 - 1.0."""
        if self._fired:
            return 1.0
        return min(1.0, self.counter / self.min_consecutive)

    def _on_bad_frame(self):
        if self.policy is ResetPolicy.SOFT_DECAY:
            self.counter = max(0, self.counter - 1)
        else:
            self.counter = 0

    def update(self, is_valid: bool, alignment_score: float = 1.0) -> bool:
        """Feed one processed frame.

        Args:
            is_valid: Whether the validity classifier accepted the frame.
            alignment_score: Alignment of the accepted detection.

        Returns:
            ``True`` exactly on the frame that triggers a capture.
        """
        if self._fired:
            return False

        if not is_valid or alignment_score <= self.alignment_threshold:
            before = self.counter
            self._on_bad_frame()
            if before and not self.counter:
                log.debug("Debounce counter reset")
            return False

        self.counter += 1
        log.debug(f"Debounce {self.counter}/{self.min_consecutive}")

        if self.counter >= self.min_consecutive:
            self.counter = 0
            self._fired = True
            log.info(f"Capture triggered after {self.min_consecutive} consecutive frames")
            return True
        return False

    def reset(self):
        """Return to IDLE, dropping any partial run and the fired latch."""
        self.counter = 0
        self._fired = False

    def rearm(self):
        """Allow another capture (manual recapture or restart)."""
        if self._fired:
            log.info("Debouncer re-armed")
        self.reset()
