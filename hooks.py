"""
Pluggable operators invoked by the colony.

Two capabilities can be injected into a control object:

- a local search ``(tour, initial_tour) -> tour`` applied to the ants' tours
  at scheduled iterations, and
- a local pheromone update ``(pheromone) -> pheromone`` applied after every
  construction step.

Absence of either one is modelled with an explicit no-op variant so the
engine never has to test for ``None``.
"""
from __future__ import annotations

import inspect
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np


class LocalSearch:
    """Tour refinement strategy."""

    enabled = True

    def __call__(self, tour: List[int], initial_tour: List[int]) -> List[int]:
        raise NotImplementedError


class NoLocalSearch(LocalSearch):
    enabled = False

    def __call__(self, tour: List[int], initial_tour: List[int]) -> List[int]:
        return tour

    def __repr__(self) -> str:
        return "NoLocalSearch()"


class FunctionLocalSearch(LocalSearch):
    def __init__(self, fun: Callable[..., Sequence[int]]) -> None:
        self.fun = fun

    def __call__(self, tour: List[int], initial_tour: List[int]) -> List[int]:
        return self.fun(tour=tour, initial_tour=initial_tour)

    def __repr__(self) -> str:
        return f"FunctionLocalSearch({getattr(self.fun, '__name__', self.fun)!r})"


class TwoOpt(LocalSearch):
    """
    First-improvement 2-opt on a closed tour.

    Args:
        distance_matrix: Symmetric cost matrix of the instance.
        max_rounds: Upper bound on full improvement sweeps.
    """

    def __init__(self, distance_matrix: np.ndarray, max_rounds: int = 10) -> None:
        self.distance_matrix = distance_matrix
        self.max_rounds = max_rounds

    def __call__(self, tour: List[int], initial_tour: List[int]) -> List[int]:
        d = self.distance_matrix
        best = list(tour)
        n = len(best)
        if n < 4:
            return best

        rounds = 0
        improved = True
        while improved and rounds < self.max_rounds:
            improved = False
            rounds += 1
            for i in range(n - 2):
                # with i == 0 the closing edge shares a node with edge (0, 1)
                for j in range(i + 2, n if i > 0 else n - 1):
                    a, b = best[i], best[i + 1]
                    c, e = best[j], best[(j + 1) % n]
                    delta = d[a, c] + d[b, e] - d[a, b] - d[c, e]
                    if delta < -1e-9:
                        best[i + 1 : j + 1] = best[i + 1 : j + 1][::-1]
                        improved = True
        return best

    def __repr__(self) -> str:
        return f"TwoOpt(max_rounds={self.max_rounds})"


class PheromoneUpdate:
    """Per-step pheromone modification strategy."""

    enabled = True

    def __call__(self, pheromone: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class NoPheromoneUpdate(PheromoneUpdate):
    enabled = False

    def __call__(self, pheromone: np.ndarray) -> np.ndarray:
        return pheromone

    def __repr__(self) -> str:
        return "NoPheromoneUpdate()"


class FunctionPheromoneUpdate(PheromoneUpdate):
    def __init__(self, fun: Callable[[np.ndarray], np.ndarray]) -> None:
        self.fun = fun

    def __call__(self, pheromone: np.ndarray) -> np.ndarray:
        return self.fun(pheromone)

    def __repr__(self) -> str:
        return f"FunctionPheromoneUpdate({getattr(self.fun, '__name__', self.fun)!r})"


class LocalEvaporation(PheromoneUpdate):
    """ACS-style local rule: tau <- (1 - phi) * tau + phi * tau0."""

    def __init__(self, phi: float = 0.1, tau0: float = 0.0001) -> None:
        self.phi = phi
        self.tau0 = tau0

    def __call__(self, pheromone: np.ndarray) -> np.ndarray:
        return (1.0 - self.phi) * pheromone + self.phi * self.tau0

    def __repr__(self) -> str:
        return f"LocalEvaporation(phi={self.phi}, tau0={self.tau0})"


def _check_call(fun: Callable, *args, **kwargs) -> None:
    try:
        sig = inspect.signature(fun)
    except (TypeError, ValueError):
        # builtins without introspectable signatures are accepted as-is
        return
    sig.bind(*args, **kwargs)


def as_local_search(fun: Optional[Callable]) -> LocalSearch:
    """Normalize a user supplied local search into a LocalSearch strategy.

    Raises:
        TypeError: If ``fun`` is not callable as ``fun(tour=..., initial_tour=...)``.
    """
    if fun is None:
        return NoLocalSearch()
    if isinstance(fun, LocalSearch):
        if type(fun).__call__ is LocalSearch.__call__:
            raise TypeError(f"{type(fun).__name__} does not implement __call__")
        return fun
    if not callable(fun):
        raise TypeError(f"local search must be callable, got {type(fun).__name__}")
    try:
        _check_call(fun, tour=None, initial_tour=None)
    except TypeError as exc:
        raise TypeError(
            "local search must accept the arguments 'tour' and 'initial_tour'"
        ) from exc
    return FunctionLocalSearch(fun)


def as_pheromone_update(fun: Optional[Callable]) -> PheromoneUpdate:
    """Normalize a user supplied local pheromone update into a strategy.

    Raises:
        TypeError: If ``fun`` cannot be called with a single pheromone matrix.
    """
    if fun is None:
        return NoPheromoneUpdate()
    if isinstance(fun, PheromoneUpdate):
        if type(fun).__call__ is PheromoneUpdate.__call__:
            raise TypeError(f"{type(fun).__name__} does not implement __call__")
        return fun
    if not callable(fun):
        raise TypeError(f"local pheromone update must be callable, got {type(fun).__name__}")
    try:
        _check_call(fun, None)
    except TypeError as exc:
        raise TypeError(
            "local pheromone update must accept exactly one argument (the pheromone matrix)"
        ) from exc
    return FunctionPheromoneUpdate(fun)


class LocalSearchSchedule:
    """
    Iterations at which the local search fires.

    A single step ``K`` means "every K iterations"; several steps are taken
    as an explicit list of iterations.
    """

    def __init__(self, steps: Iterable[int] = ()) -> None:
        self.steps: Tuple[int, ...] = tuple(steps)

    def __contains__(self, iteration: int) -> bool:
        if not self.steps:
            return False
        if len(self.steps) == 1:
            return iteration % self.steps[0] == 0
        return iteration in self.steps

    def __bool__(self) -> bool:
        return bool(self.steps)

    def describe(self) -> str:
        if len(self.steps) > 1:
            return "in iterations " + ", ".join(str(s) for s in self.steps) + "."
        if self.steps:
            return f"every {self.steps[0]} iterations."
        return "never."
