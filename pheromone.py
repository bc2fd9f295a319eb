"""
The pheromone matrix shared by all ants of a colony.

Ants never touch the matrix directly. They receive a handle:

- ``SharedPheromone``: a read-only view. Several ants may hold one at the
  same time, so construction can run on worker threads.
- ``ExclusivePheromone``: handed out when a local pheromone update runs after
  every construction step. The matrix changes under the ant's feet, so ants
  holding this handle are built one after another.
"""
from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from hooks import PheromoneUpdate
from utils import tour_edges

logger = logging.getLogger(__name__)


class PheromoneMatrix:
    """Symmetric n x n pheromone concentrations kept within [min_conc, max_conc]."""

    def __init__(self, n: int, init_conc: float, min_conc: float, max_conc: float) -> None:
        if n < 1:
            raise ValueError(f"Pheromone matrix needs at least one node, got n={n}")
        self.min_conc = float(min_conc)
        self.max_conc = float(max_conc)
        self._tau = np.full((n, n), float(init_conc), dtype=float)
        self.clamp()

    @property
    def n(self) -> int:
        return self._tau.shape[0]

    @property
    def values(self) -> np.ndarray:
        """Read-only view on the current concentrations."""
        view = self._tau.view()
        view.setflags(write=False)
        return view

    def snapshot(self) -> np.ndarray:
        return self._tau.copy()

    def evaporate(self, rho: float) -> None:
        self._tau *= 1.0 - rho

    def deposit(self, route: Sequence[int], amount: float) -> None:
        """Add `amount` to every edge of the closed tour, in both directions."""
        src, dst = tour_edges(route)
        # np.add.at accumulates repeated index pairs (e.g. a 2-city tour)
        np.add.at(self._tau, (src, dst), amount)
        np.add.at(self._tau, (dst, src), amount)

    def clamp(self) -> None:
        np.clip(self._tau, self.min_conc, self.max_conc, out=self._tau)

    def handle(self, exclusive: bool) -> "SharedPheromone | ExclusivePheromone":
        if exclusive:
            return ExclusivePheromone(self)
        return SharedPheromone(self)

    def _replace(self, new_values: np.ndarray) -> None:
        self._tau[...] = new_values
        self.clamp()

    def __repr__(self) -> str:
        return (
            f"PheromoneMatrix(n={self.n}, min={self._tau.min():.4g}, "
            f"max={self._tau.max():.4g}, bounds=[{self.min_conc:g}, {self.max_conc:g}])"
        )


class SharedPheromone:
    parallel_safe = True

    def __init__(self, matrix: PheromoneMatrix) -> None:
        self._values = matrix.values

    @property
    def values(self) -> np.ndarray:
        return self._values


class ExclusivePheromone:
    parallel_safe = False

    def __init__(self, matrix: PheromoneMatrix) -> None:
        self._matrix = matrix

    @property
    def values(self) -> np.ndarray:
        return self._matrix.values

    def apply(self, update: PheromoneUpdate) -> bool:
        """
        Run a local pheromone update and write its result back.

        The hook works on a copy. A result of the wrong shape, or holding
        negative or non-finite entries, is discarded and the matrix keeps
        its previous values.

        Returns:
            True if the result was accepted.
        """
        shape = self._matrix.values.shape
        result = update(self._matrix.snapshot())
        try:
            result = np.asarray(result, dtype=float)
        except (TypeError, ValueError):
            logger.warning(f"Local pheromone update returned a non-numeric result ({type(result).__name__}); ignored")
            return False
        if result.shape != shape:
            logger.warning(
                f"Local pheromone update returned shape {result.shape}, expected {shape}; ignored"
            )
            return False
        if not np.all(np.isfinite(result)) or np.any(result < 0):
            logger.warning("Local pheromone update returned negative or non-finite values; ignored")
            return False
        self._matrix._replace(result)
        return True
