"""
Colony tests: tour construction, local search, and full runs.

The reference instance is a 4-city matrix whose only shortest cycle is
0-1-2-3 with length 10:

        0   1   2   3
    0 [ 0,  1,  5,  4 ]
    1 [ 1,  0,  2,  5 ]
    2 [ 5,  2,  0,  3 ]
    3 [ 4,  5,  3,  0 ]
"""
from __future__ import annotations

import logging
import warnings

import numpy as np
import pytest

from aco import AntColony, RunState, Tour
from control import ACOTSPControl
from termination import StopReason
from tsp_instance import TSPInstance
from utils import compute_route_length


FOUR_CITIES = np.array(
    [
        [0.0, 1.0, 5.0, 4.0],
        [1.0, 0.0, 2.0, 5.0],
        [5.0, 2.0, 0.0, 3.0],
        [4.0, 5.0, 3.0, 0.0],
    ]
)
FOUR_CITIES_OPTIMUM = 10.0


def _random_instance(n: int = 12, seed: int = 0) -> TSPInstance:
    return TSPInstance.random(n, seed=seed)


def _is_permutation(tour: Tour, n: int) -> bool:
    return sorted(tour.nodes) == list(range(n))


class FakeClock:
    """Advances by a fixed step every time it is read."""

    def __init__(self, step: float) -> None:
        self.step = step
        self.now = -step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


# ─────────────────────────────────────────────────────────────────────────────
# Construction
# ─────────────────────────────────────────────────────────────────────────────

class TestConstruction:

    def test_every_tour_is_a_permutation(self):
        instance = _random_instance(15)
        colony = AntColony(instance, ACOTSPControl(n_ants=8, max_iter=5, trace_all=True), seed=3)
        result = colony.run()
        for entry in result.trace:
            assert len(entry.tours) == 8
            for tour in entry.tours:
                assert _is_permutation(tour, 15)
                assert tour.length == pytest.approx(
                    compute_route_length(tour.nodes, instance.distance_matrix)
                )

    def test_fixed_start_city(self):
        colony = AntColony(
            _random_instance(6), ACOTSPControl(n_ants=4, max_iter=2, trace_all=True), start_city=2, seed=0
        )
        result = colony.run()
        assert all(t.nodes[0] == 2 for entry in result.trace for t in entry.tours)

    def test_full_perturbation_still_valid(self):
        colony = AntColony(
            _random_instance(10), ACOTSPControl(n_ants=5, prp_prob=1.0, max_iter=3, trace_all=True), seed=5
        )
        result = colony.run()
        assert all(_is_permutation(t, 10) for entry in result.trace for t in entry.tours)

    def test_zero_weights_fall_back_to_uniform(self):
        # all cities coincide: every heuristic weight is zero
        colony = AntColony(np.zeros((5, 5)), ACOTSPControl(n_ants=3, max_iter=2, trace_all=True), seed=1)
        result = colony.run()
        assert result.best_length == 0.0
        assert all(_is_permutation(t, 5) for entry in result.trace for t in entry.tours)

    def test_choice_prefers_short_edges(self):
        colony = AntColony(FOUR_CITIES, ACOTSPControl(beta=5), seed=0)
        pheromone = colony.init_state().pheromone.values
        rng = np.random.default_rng(0)
        picks = [
            colony._choose_next_city(0, np.array([1, 2, 3]), pheromone, rng) for _ in range(200)
        ]
        assert picks.count(1) > 150

    def test_full_perturbation_ignores_pheromone(self):
        colony = AntColony(FOUR_CITIES, ACOTSPControl(prp_prob=1.0), seed=0)
        pheromone = np.full((4, 4), 1e-4)
        pheromone[0, 2] = pheromone[2, 0] = 1000.0
        rng = np.random.default_rng(0)
        picks = [colony._choose_next_city(0, np.array([1, 2, 3]), pheromone, rng) for _ in range(600)]
        assert all(picks.count(city) > 120 for city in (1, 2, 3))

    def test_no_perturbation_follows_pheromone(self):
        colony = AntColony(FOUR_CITIES, ACOTSPControl(prp_prob=0.0), seed=0)
        pheromone = np.full((4, 4), 1e-4)
        pheromone[0, 2] = pheromone[2, 0] = 1000.0
        rng = np.random.default_rng(0)
        picks = [colony._choose_next_city(0, np.array([1, 2, 3]), pheromone, rng) for _ in range(600)]
        assert picks.count(2) > 590

    def test_large_alpha_keeps_strongest_trail(self):
        # tau^alpha alone overflows float64 here
        colony = AntColony(FOUR_CITIES, ACOTSPControl(alpha=60), seed=0)
        pheromone = np.full((4, 4), 1e-4)
        pheromone[0, 1] = pheromone[1, 0] = 1e6
        rng = np.random.default_rng(0)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            picks = [colony._choose_next_city(0, np.array([1, 2, 3]), pheromone, rng) for _ in range(600)]
        assert picks == [1] * 600

    def test_closed_tour(self):
        tour = Tour(nodes=(2, 0, 1), length=3.0)
        assert tour.closed() == [2, 0, 1, 2]
        assert len(tour) == 3

    def test_invalid_engine_arguments(self):
        with pytest.raises(ValueError):
            AntColony(FOUR_CITIES, start_city=4)
        with pytest.raises(ValueError):
            AntColony(FOUR_CITIES, n_workers=0)
        with pytest.raises(ValueError):
            AntColony(np.array([[0.0, 1.0], [2.0, 0.0]]))


class TestParallelConstruction:

    def test_threads_reproduce_serial_run(self):
        instance = _random_instance(12, seed=4)
        control = ACOTSPControl(n_ants=6, max_iter=4, trace_all=True)
        serial = AntColony(instance, control, seed=11, n_workers=1).run()
        threaded = AntColony(instance, control, seed=11, n_workers=4).run()
        assert serial.best_history == threaded.best_history
        for a, b in zip(serial.trace, threaded.trace):
            assert [t.nodes for t in a.tours] == [t.nodes for t in b.tours]

    def test_local_update_forces_exclusive_serial_construction(self):
        calls = []

        def local_update(pher):
            calls.append(pher.shape)
            return pher * 0.99

        control = ACOTSPControl(n_ants=3, max_iter=2, local_pher_update_fun=local_update)
        AntColony(FOUR_CITIES, control, seed=0, n_workers=4).run()
        # one call per construction step: 2 iterations x 3 ants x 3 steps
        assert len(calls) == 18
        assert all(shape == (4, 4) for shape in calls)


# ─────────────────────────────────────────────────────────────────────────────
# Local search adapter
# ─────────────────────────────────────────────────────────────────────────────

class TestLocalSearch:

    def test_applied_to_every_ant_on_scheduled_iterations(self):
        seen = []

        def search(tour, initial_tour):
            seen.append((list(tour), list(initial_tour)))
            return tour

        control = ACOTSPControl(n_ants=3, max_iter=4, local_search_fun=search, local_search_step=[1, 3])
        AntColony(FOUR_CITIES, control, seed=0).run()
        assert len(seen) == 6
        assert all(tour == initial for tour, initial in seen)

    def test_every_k_iterations(self):
        seen = []

        def search(tour, initial_tour):
            seen.append(tour)
            return tour

        control = ACOTSPControl(n_ants=2, max_iter=6, local_search_fun=search, local_search_step=[2])
        AntColony(FOUR_CITIES, control, seed=0).run()
        # iterations 2, 4 and 6
        assert len(seen) == 6

    def test_improvement_is_used(self):
        def reverse_to_optimum(tour, initial_tour):
            return [0, 1, 2, 3]

        control = ACOTSPControl(
            n_ants=2, max_iter=1, local_search_fun=reverse_to_optimum, local_search_step=[1], trace_all=True
        )
        result = AntColony(FOUR_CITIES, control, seed=0).run()
        assert all(t.nodes == (0, 1, 2, 3) for t in result.trace.iterations[0].tours)
        assert result.best_length == FOUR_CITIES_OPTIMUM

    def test_invalid_result_rejected(self, caplog):
        def broken(tour, initial_tour):
            return tour[:-1] + [tour[0]]

        control = ACOTSPControl(
            n_ants=2, max_iter=2, local_search_fun=broken, local_search_step=[1], trace_all=True
        )
        with caplog.at_level(logging.WARNING, logger="aco"):
            result = AntColony(FOUR_CITIES, control, seed=0).run()
        assert "rejected" in caplog.text
        assert all(_is_permutation(t, 4) for entry in result.trace for t in entry.tours)

    def test_non_integer_result_rejected(self, caplog):
        before = []

        def fractional(tour, initial_tour):
            before.append(tuple(initial_tour))
            return [0, 1.9, 2.5, 3.2]

        control = ACOTSPControl(
            n_ants=2, max_iter=1, local_search_fun=fractional, local_search_step=[1], trace_all=True
        )
        with caplog.at_level(logging.WARNING, logger="aco"):
            result = AntColony(FOUR_CITIES, control, seed=0).run()
        assert "rejected" in caplog.text
        assert [t.nodes for t in result.trace.iterations[0].tours] == before


# ─────────────────────────────────────────────────────────────────────────────
# Full runs
# ─────────────────────────────────────────────────────────────────────────────

class TestRun:

    def test_finds_unique_optimum(self):
        control = ACOTSPControl(n_ants=5, n_elite=5, use_global_best=False, max_iter=3)
        result = AntColony(FOUR_CITIES, control, seed=42).run()
        assert result.iterations == 3
        assert result.stop_reason is StopReason.STOP_ITER_LIMIT
        assert result.best_length == pytest.approx(FOUR_CITIES_OPTIMUM)

    def test_same_seed_same_run(self):
        control = ACOTSPControl(n_ants=4, max_iter=5)
        a = AntColony(_random_instance(9), control, seed=7).run()
        b = AntColony(_random_instance(9), control, seed=7).run()
        assert a.best_history == b.best_history
        assert a.best_route == b.best_route

    def test_global_best_never_increases(self):
        control = ACOTSPControl(n_ants=4, n_elite=1, prp_prob=0.3, max_iter=25)
        result = AntColony(_random_instance(14), control, seed=2).run()
        history = result.best_history
        assert len(history) == 25
        assert all(later <= earlier for earlier, later in zip(history, history[1:]))
        assert result.best_length == history[-1]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"n_elite": 3},
            {"n_elite": 3, "best_deposit_only": True},
            {"n_elite": 0, "use_global_best": True},
            {"n_elite": 2, "use_global_best": True, "best_deposit_only": True},
        ],
    )
    def test_pheromone_stays_within_bounds(self, kwargs):
        control = ACOTSPControl(
            n_ants=4,
            max_iter=10,
            rho=0.3,
            q=50.0,
            min_pher_conc=0.05,
            max_pher_conc=2.0,
            trace_all=True,
            **kwargs,
        )
        result = AntColony(_random_instance(8), control, seed=9).run()
        history = result.trace.pheromone_history()
        assert history.shape == (10, 8, 8)
        assert history.min() >= 0.05
        assert history.max() <= 2.0

    def test_stops_on_optimality_gap(self):
        control = ACOTSPControl(n_ants=5, max_iter=100, global_opt_value=9.95, termination_eps=0.1)
        result = AntColony(FOUR_CITIES, control, seed=0).run()
        assert result.stop_reason is StopReason.STOP_OPT_GAP
        assert result.best_length == pytest.approx(FOUR_CITIES_OPTIMUM)
        assert result.iterations < 100

    def test_time_budget_stops_before_overrun(self):
        control = ACOTSPControl(n_ants=2, max_iter=100, max_time=100)
        colony = AntColony(FOUR_CITIES, control, seed=0, clock=FakeClock(30.0))
        result = colony.run()
        # three 30s iterations done, 10s left: a fourth one would not fit
        assert result.stop_reason is StopReason.STOP_TIME_LIMIT
        assert result.iterations == 3
        assert result.elapsed == pytest.approx(90.0)

    def test_duration_log_keeps_last_window(self):
        control = ACOTSPControl(n_ants=2, max_iter=8, time_window=3)
        colony = AntColony(FOUR_CITIES, control, seed=0)
        state = colony.init_state()
        assert isinstance(state, RunState)
        assert state.durations.maxlen == 3

    def test_trace_disabled_by_default(self):
        result = AntColony(FOUR_CITIES, ACOTSPControl(max_iter=2), seed=0).run()
        assert result.trace is None
        assert result.best_tour is not None

    def test_trace_records_every_iteration(self):
        control = ACOTSPControl(n_ants=3, max_iter=4, trace_all=True)
        result = AntColony(FOUR_CITIES, control, seed=0).run()
        assert len(result.trace) == 4
        for i, entry in enumerate(result.trace, start=1):
            assert entry.iteration == i
            assert entry.global_best.length == result.best_history[i - 1]
            assert entry.iteration_best.length == min(t.length for t in entry.tours)
            assert not entry.pheromone.flags.writeable

    def test_iterate_threads_explicit_state(self):
        colony = AntColony(FOUR_CITIES, ACOTSPControl(n_ants=3), seed=0)
        state = colony.init_state()
        state = colony.iterate(state)
        state = colony.iterate(state)
        assert state.iteration == 2
        assert len(state.best_history) == 2
        assert state.global_best is not None
