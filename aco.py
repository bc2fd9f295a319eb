from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Sequence, Tuple

import numpy as np

from control import ACOTSPControl
from pheromone import ExclusivePheromone, PheromoneMatrix, SharedPheromone
from termination import TerminationEstimator
from tracing import RunResult, TraceRecorder
from tsp_instance import TSPInstance
from update import update_pheromones
from utils import compute_route_length, rank_by_length, validate_route

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tour:
    """A Hamiltonian cycle given as a permutation of the cities."""

    nodes: Tuple[int, ...]
    length: float

    def closed(self) -> List[int]:
        """The tour with the start city repeated at the end."""
        return list(self.nodes) + [self.nodes[0]]

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass
class RunState:
    """Mutable state carried from one iteration to the next."""

    pheromone: PheromoneMatrix
    durations: Deque[float]
    iteration: int = 0
    elapsed: float = 0.0
    global_best: Optional[Tour] = None
    best_history: List[float] = field(default_factory=list)
    trace: Optional[TraceRecorder] = None

    @property
    def best_length(self) -> Optional[float]:
        return None if self.global_best is None else self.global_best.length


@dataclass
class AntColony:
    """
    Ant colony optimizer for the symmetric TSP, driven by an ACOTSPControl.

    Args:
        distance_matrix: Symmetric cost matrix, or a ready TSPInstance.
        control: Validated run parameters.
        start_city: Fixed start city for every ant; ``None`` draws one per ant.
        seed: Seed of the random generator.
        n_workers: Threads used to build tours. Ignored (serial construction)
            when a local pheromone update is configured.
        clock: Time source in seconds.
    """

    distance_matrix: np.ndarray
    control: ACOTSPControl = field(default_factory=ACOTSPControl)
    start_city: Optional[int] = None
    seed: Optional[int] = None
    n_workers: int = 1
    clock: Callable[[], float] = time.perf_counter

    def __post_init__(self) -> None:
        if isinstance(self.distance_matrix, TSPInstance):
            self.instance = self.distance_matrix
        else:
            self.instance = TSPInstance(self.distance_matrix)
        self.distance_matrix = self.instance.distance_matrix
        self.num_cities = self.instance.num_cities

        if self.start_city is not None and not 0 <= self.start_city < self.num_cities:
            raise ValueError(
                f"start_city must be in [0, {self.num_cities - 1}], got {self.start_city}"
            )
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")

        # log of (att_factor / d)^beta, -inf where two cities coincide
        with np.errstate(divide="ignore"):
            log_heuristic = self.control.beta * (
                np.log(self.control.att_factor) - np.log(self.distance_matrix)
            )
        log_heuristic[self.distance_matrix == 0] = -np.inf
        self.log_heuristic = log_heuristic

        self.rng = np.random.default_rng(self.seed)
        self.termination = TerminationEstimator.from_control(self.control)

    # ---------- run loop ----------

    def init_state(self) -> RunState:
        c = self.control
        return RunState(
            pheromone=PheromoneMatrix(
                self.num_cities, c.init_pher_conc, c.min_pher_conc, c.max_pher_conc
            ),
            durations=deque(maxlen=c.time_window),
            trace=TraceRecorder() if c.trace_all else None,
        )

    def run(self) -> RunResult:
        c = self.control
        logger.info(
            f"Starting ACO run: {self.num_cities} cities, {c.n_ants} ants, "
            f"deposit by {c.deposit_policy.value}"
        )
        state = self.init_state()
        start = now = self.clock()

        while True:
            state.elapsed = now - start
            reason = self.termination.check(
                state.iteration, state.best_length, state.elapsed, state.durations
            )
            if reason.stopped:
                break
            self.iterate(state)
            end = self.clock()
            state.durations.append(end - now)
            now = end

        logger.info(
            f"ACO run stopped after {state.iteration} iterations ({reason.value}): "
            f"best length {state.best_length}"
        )
        return RunResult(
            best_tour=state.global_best,
            iterations=state.iteration,
            stop_reason=reason,
            best_history=state.best_history,
            elapsed=state.elapsed,
            trace=state.trace,
        )

    def iterate(self, state: RunState) -> RunState:
        """Run one full iteration: construction, local search, pheromone update."""
        iteration = state.iteration + 1

        tours = self._construct_tours(state.pheromone)
        tours = self._apply_local_search(iteration, tours)

        iteration_best = tours[rank_by_length([t.length for t in tours])[0]]
        if state.global_best is None or iteration_best.length < state.global_best.length:
            state.global_best = iteration_best

        update_pheromones(state.pheromone, tours, self.control, state.global_best)

        state.iteration = iteration
        state.best_history.append(state.global_best.length)
        if state.trace is not None:
            state.trace.record(
                iteration,
                state.pheromone.values,
                tours,
                iteration_best,
                state.global_best,
            )
        logger.debug(
            f"Iteration {iteration}: iteration best {iteration_best.length:.4f}, "
            f"global best {state.global_best.length:.4f}"
        )
        return state

    # ---------- tour construction ----------

    def _construct_tours(self, pheromone: PheromoneMatrix) -> List[Tour]:
        n_ants = self.control.n_ants
        handle = pheromone.handle(exclusive=self.control.local_pher_update.enabled)
        ant_rngs = self.rng.spawn(n_ants)

        if handle.parallel_safe and self.n_workers > 1:
            with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
                routes = list(pool.map(lambda rng: self._build_route(handle, rng), ant_rngs))
        else:
            routes = [self._build_route(handle, rng) for rng in ant_rngs]

        return [self._make_tour(route) for route in routes]

    def _build_route(
        self, handle: SharedPheromone | ExclusivePheromone, rng: np.random.Generator
    ) -> List[int]:
        start = self.start_city if self.start_city is not None else int(rng.integers(self.num_cities))
        route = [start]
        unvisited = np.ones(self.num_cities, dtype=bool)
        unvisited[start] = False

        current_city = start
        for _ in range(self.num_cities - 1):
            candidates = np.flatnonzero(unvisited)
            next_city = self._choose_next_city(current_city, candidates, handle.values, rng)
            route.append(next_city)
            unvisited[next_city] = False
            current_city = next_city
            if isinstance(handle, ExclusivePheromone):
                handle.apply(self.control.local_pher_update)

        return route

    def _choose_next_city(
        self,
        current_city: int,
        candidates: np.ndarray,
        pheromone: np.ndarray,
        rng: np.random.Generator,
    ) -> int:
        """Choose the next city based on pheromone and heuristic information."""
        if len(candidates) == 1:
            return int(candidates[0])

        # perturbation: ignore the pheromone trail for this step
        if self.control.prp_prob > 0 and rng.random() < self.control.prp_prob:
            return int(rng.choice(candidates))

        # tau^alpha * eta^beta, evaluated in log space and scaled by the row maximum
        log_weights = self.log_heuristic[current_city, candidates].copy()
        if self.control.alpha != 0:
            with np.errstate(divide="ignore", invalid="ignore"):
                log_weights += self.control.alpha * np.log(pheromone[current_city, candidates])

        top = log_weights.max()
        # every weight is zero (or undefined): choose uniformly
        if not np.isfinite(top):
            return int(rng.choice(candidates))

        with np.errstate(invalid="ignore"):
            desirability = np.exp(log_weights - top)
        total = desirability.sum()
        if not np.isfinite(total) or total <= 0:
            return int(rng.choice(candidates))

        probabilities = desirability / total
        return int(rng.choice(candidates, p=probabilities))

    def _make_tour(self, route: Sequence[int]) -> Tour:
        nodes = tuple(int(i) for i in route)
        return Tour(nodes=nodes, length=compute_route_length(nodes, self.distance_matrix))

    # ---------- local search ----------

    def _apply_local_search(self, iteration: int, tours: List[Tour]) -> List[Tour]:
        local_search = self.control.local_search
        if not local_search.enabled or iteration not in self.control.local_search_schedule:
            return tours

        refined = []
        for ant, tour in enumerate(tours):
            result = local_search(tour=list(tour.nodes), initial_tour=list(tour.nodes))
            valid, msg = validate_route(result, self.num_cities)
            if not valid:
                logger.warning(
                    f"Iteration {iteration}: local search result for ant {ant} rejected ({msg})"
                )
                refined.append(tour)
                continue
            refined.append(self._make_tour(result))
        return refined
