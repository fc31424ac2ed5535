"""
Protocol phases
===============
SignUp -> Voting -> Processing -> Tallying -> Finalized. Phases only move
forward, one step at a time.
"""

import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional

from .errors import PhaseViolation

logger = logging.getLogger(__name__)


class Phase(IntEnum):
    SIGN_UP = 0
    VOTING = 1
    PROCESSING = 2
    TALLYING = 3
    FINALIZED = 4


class PhaseTracker:
    """Monotonic phase cursor owned by a single election instance"""

    def __init__(self, phase: Phase = Phase.SIGN_UP):
        self._phase = Phase(phase)

    @property
    def phase(self) -> Phase:
        return self._phase

    def require(self, *allowed: Phase, operation: str = "operation"):
        if self._phase not in allowed:
            names = ", ".join(p.name for p in allowed)
            raise PhaseViolation(
                f"{operation} is only valid during {names}; current phase is {self._phase.name}")

    def advance(self, target: Phase, guard: Optional[Callable[[], bool]] = None,
                guard_reason: str = "precondition not met") -> Phase:
        target = Phase(target)
        if target != self._phase + 1:
            raise PhaseViolation(
                f"Cannot move from {self._phase.name} to {target.name}")
        if guard is not None and not guard():
            raise PhaseViolation(f"Cannot enter {target.name}: {guard_reason}")

        logger.info(f"Phase transition {self._phase.name} -> {target.name}")
        self._phase = target
        return self._phase

    def copy(self) -> 'PhaseTracker':
        return PhaseTracker(self._phase)


@dataclass(frozen=True)
class PhaseSchedule:
    """Time gates for the sign-up and voting windows, in seconds"""
    deploy_time: float
    sign_up_duration: float
    voting_duration: float

    def __post_init__(self):
        if self.sign_up_duration <= 0 or self.voting_duration <= 0:
            raise ValueError("Phase durations must be positive")

    @property
    def sign_up_deadline(self) -> float:
        return self.deploy_time + self.sign_up_duration

    @property
    def voting_deadline(self) -> float:
        return self.sign_up_deadline + self.voting_duration

    def phase_at(self, timestamp: float) -> Phase:
        """
        Latest phase the clock permits. Processing and later phases are
        entered explicitly once their preconditions hold.
        """
        if timestamp < self.deploy_time:
            raise PhaseViolation("Election has not been deployed yet")
        if timestamp < self.sign_up_deadline:
            return Phase.SIGN_UP
        if timestamp < self.voting_deadline:
            return Phase.VOTING
        return Phase.PROCESSING


class ManualClock:
    """Clock that only moves when told to"""

    def __init__(self, start: Optional[float] = None):
        self._now = time.time() if start is None else float(start)

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self._now += seconds
        return self._now
