from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from aco import Tour
    from termination import StopReason


@dataclass(frozen=True)
class IterationTrace:
    """Everything the colony knew at the end of one iteration."""

    iteration: int
    pheromone: np.ndarray
    tours: List["Tour"]
    iteration_best: "Tour"
    global_best: "Tour"


@dataclass
class TraceRecorder:
    iterations: List[IterationTrace] = field(default_factory=list)

    def record(
        self,
        iteration: int,
        pheromone: np.ndarray,
        tours: Sequence["Tour"],
        iteration_best: "Tour",
        global_best: "Tour",
    ) -> IterationTrace:
        snapshot = np.array(pheromone, dtype=float, copy=True)
        snapshot.setflags(write=False)
        entry = IterationTrace(
            iteration=iteration,
            pheromone=snapshot,
            tours=list(tours),
            iteration_best=iteration_best,
            global_best=global_best,
        )
        self.iterations.append(entry)
        return entry

    def pheromone_history(self) -> np.ndarray:
        """Stacked snapshots, shape (iterations, n, n)."""
        if not self.iterations:
            return np.empty((0, 0, 0))
        return np.stack([entry.pheromone for entry in self.iterations])

    def __len__(self) -> int:
        return len(self.iterations)

    def __iter__(self):
        return iter(self.iterations)


@dataclass
class RunResult:
    best_tour: Optional["Tour"]
    iterations: int
    stop_reason: "StopReason"
    best_history: List[float] = field(default_factory=list)
    elapsed: float = 0.0
    trace: Optional[TraceRecorder] = None

    @property
    def best_length(self) -> float:
        if self.best_tour is None:
            return float("inf")
        return self.best_tour.length

    @property
    def best_route(self) -> List[int]:
        if self.best_tour is None:
            return []
        return list(self.best_tour.nodes)
