"""
Stopping rules of a run.

Three criteria are checked before every iteration:

1. the squared gap between the best tour and a known optimum dropped below
   ``termination_eps``,
2. ``max_iter`` iterations are done,
3. the next iteration is not expected to finish within ``max_time``.

The time criterion never interrupts an iteration. It uses the durations of
the last few iterations to predict the next one and refuses to start it if
the prediction exceeds the remaining budget.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from control import ACOTSPControl


class StopReason(Enum):
    CONTINUE = "continue"
    STOP_OPT_GAP = "global optimum reached"
    STOP_ITER_LIMIT = "iteration limit reached"
    STOP_TIME_LIMIT = "time limit reached"

    @property
    def stopped(self) -> bool:
        return self is not StopReason.CONTINUE


@dataclass(frozen=True)
class TerminationEstimator:
    max_iter: int = 10
    max_time: float = math.inf
    global_opt_value: Optional[float] = None
    termination_eps: float = 0.1

    @classmethod
    def from_control(cls, control: ACOTSPControl) -> "TerminationEstimator":
        return cls(
            max_iter=control.max_iter,
            max_time=control.max_time,
            global_opt_value=control.global_opt_value,
            termination_eps=control.termination_eps,
        )

    @staticmethod
    def estimate(durations: Sequence[float]) -> Optional[float]:
        """Predicted duration of the next iteration: mean plus one standard deviation."""
        if len(durations) == 0:
            return None
        log = np.asarray(durations, dtype=float)
        return float(log.mean() + log.std())

    def optimum_reached(self, best_length: Optional[float]) -> bool:
        if self.global_opt_value is None or best_length is None:
            return False
        return (best_length - self.global_opt_value) ** 2 < self.termination_eps

    def time_exhausted(self, elapsed: float, durations: Sequence[float]) -> bool:
        if math.isinf(self.max_time):
            return False
        remaining = self.max_time - elapsed
        if remaining <= 0:
            return True
        estimate = self.estimate(durations)
        return estimate is not None and estimate > remaining

    def check(
        self,
        iteration: int,
        best_length: Optional[float],
        elapsed: float,
        durations: Sequence[float],
    ) -> StopReason:
        """
        Decide whether iteration ``iteration + 1`` may start.

        Args:
            iteration: Number of completed iterations.
            best_length: Length of the global best tour, ``None`` before the first iteration.
            elapsed: Seconds spent in the run so far.
            durations: Durations of the most recent iterations.
        """
        if self.optimum_reached(best_length):
            return StopReason.STOP_OPT_GAP
        if iteration >= self.max_iter:
            return StopReason.STOP_ITER_LIMIT
        if self.time_exhausted(elapsed, durations):
            return StopReason.STOP_TIME_LIMIT
        return StopReason.CONTINUE
