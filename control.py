"""
Control object for the ant colony.

``ACOTSPControl`` holds every tunable parameter of a run. All checks happen
once, when the object is built; afterwards the object is frozen and the
engine trusts its values.
"""
from __future__ import annotations

import math
import numbers
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Tuple

from hooks import (
    LocalSearch,
    LocalSearchSchedule,
    PheromoneUpdate,
    as_local_search,
    as_pheromone_update,
)


class ControlError(ValueError):
    """Raised when a control parameter is out of its domain."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"{name}: {message}")
        self.field = name


class DepositPolicy(Enum):
    """Which tours deposit pheromone at the end of an iteration."""

    ELITE_SET = "elite set"
    ELITE_SET_AND_GLOBAL_BEST = "elite set and global best"
    SINGLE_BEST = "iteration best"
    SINGLE_BEST_AND_GLOBAL_BEST = "iteration best and global best"
    GLOBAL_BEST = "global best"

    @property
    def uses_global_best(self) -> bool:
        return self in (
            DepositPolicy.ELITE_SET_AND_GLOBAL_BEST,
            DepositPolicy.SINGLE_BEST_AND_GLOBAL_BEST,
            DepositPolicy.GLOBAL_BEST,
        )

    def n_iteration_depositors(self, n_elite: int) -> int:
        if self in (DepositPolicy.ELITE_SET, DepositPolicy.ELITE_SET_AND_GLOBAL_BEST):
            return n_elite
        if self in (DepositPolicy.SINGLE_BEST, DepositPolicy.SINGLE_BEST_AND_GLOBAL_BEST):
            return 1
        return 0


# ---------- value checks ----------


def _check_flag(name: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise ControlError(name, f"must be a boolean, got {value!r}")


def _check_int(name: str, value: Any, lower: int) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ControlError(name, f"must be an integer, got {value!r}")
    if value < lower:
        raise ControlError(name, f"must be >= {lower}, got {value}")


def _check_number(
    name: str,
    value: Any,
    lower: float = -math.inf,
    upper: float = math.inf,
    finite: bool = False,
) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ControlError(name, f"must be a number, got {value!r}")
    if math.isnan(value):
        raise ControlError(name, "must not be NaN")
    if finite and not math.isfinite(value):
        raise ControlError(name, f"must be finite, got {value}")
    if value < lower or value > upper:
        raise ControlError(name, f"must be in [{lower}, {upper}], got {value}")


@dataclass(frozen=True)
class ACOTSPControl:
    """
    Validated, immutable parameters of an ACO run on the TSP.

    Attributes:
        n_ants: Number of ants per iteration.
        n_elite: Number of best ants of an iteration that deposit pheromone.
            ``None`` means all ants.
        use_global_best: Let the best tour found so far deposit pheromone.
        best_deposit_only: Replace the elite deposit by the iteration best tour.
        alpha: Pheromone influence exponent.
        beta: Heuristic influence exponent.
        rho: Evaporation rate.
        att_factor: Scales the heuristic attractiveness ``att_factor / d``.
        init_pher_conc: Initial pheromone on every edge.
        min_pher_conc: Lower pheromone bound.
        max_pher_conc: Upper pheromone bound.
        local_search_fun: ``(tour, initial_tour) -> tour`` or ``None``.
        local_search_step: Iterations the local search is applied at.
        prp_prob: Per-step probability of a random (perturbation) move.
        local_pher_update_fun: ``(pheromone) -> pheromone`` or ``None``.
        max_iter: Maximal number of iterations.
        max_time: Time budget in seconds, ``math.inf`` for none.
        global_opt_value: Known optimal tour length, if any.
        termination_eps: Squared optimality gap that stops the run.
        trace_all: Record pheromone and tours of every iteration.
        q: Deposit constant Q.
        time_window: Number of past iteration durations used to estimate
            the next one.
    """

    n_ants: int = 2
    n_elite: Optional[int] = None
    use_global_best: bool = False
    best_deposit_only: bool = False
    alpha: float = 1.0
    beta: float = 2.0
    rho: float = 0.1
    att_factor: float = 1.0
    init_pher_conc: float = 0.0001
    min_pher_conc: float = 0.0
    max_pher_conc: float = 10e5
    local_search_fun: Optional[Callable[..., Any]] = None
    local_search_step: Iterable[int] = ()
    prp_prob: float = 0.0
    local_pher_update_fun: Optional[Callable[..., Any]] = None
    max_iter: int = 10
    max_time: float = math.inf
    global_opt_value: Optional[float] = None
    termination_eps: float = 0.1
    trace_all: bool = False
    q: float = 1.0
    time_window: int = 5
    local_search_schedule: LocalSearchSchedule = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # frozen dataclass: normalized values are written with object.__setattr__
        set_ = object.__setattr__

        _check_int("n_ants", self.n_ants, lower=1)
        if self.n_elite is None:
            set_(self, "n_elite", self.n_ants)
        _check_int("n_elite", self.n_elite, lower=0)
        if self.n_elite > self.n_ants:
            raise ControlError(
                "n_elite",
                f"must be lower or equal to n_ants, but {self.n_elite} = n_elite > n_ants = {self.n_ants}",
            )
        _check_flag("use_global_best", self.use_global_best)
        _check_flag("best_deposit_only", self.best_deposit_only)
        if self.n_elite == 0 and not self.use_global_best:
            raise ControlError(
                "n_elite",
                "zero elite ants and no global best update leave no way to deposit pheromone",
            )

        _check_number("alpha", self.alpha, lower=0, finite=True)
        _check_number("beta", self.beta, lower=1, finite=True)
        _check_number("rho", self.rho, lower=0, upper=1)
        _check_number("att_factor", self.att_factor, lower=1, finite=True)
        _check_number("init_pher_conc", self.init_pher_conc, lower=0.0001, finite=True)
        _check_number("min_pher_conc", self.min_pher_conc, lower=0, finite=True)
        _check_number("max_pher_conc", self.max_pher_conc, lower=1, finite=True)
        if self.min_pher_conc >= self.max_pher_conc:
            raise ControlError(
                "min_pher_conc",
                f"must be lower than max_pher_conc, got {self.min_pher_conc} >= {self.max_pher_conc}",
            )
        _check_number("prp_prob", self.prp_prob, lower=0, upper=1)
        _check_number("q", self.q, lower=0, finite=True)
        if self.q <= 0:
            raise ControlError("q", f"must be positive, got {self.q}")

        try:
            set_(self, "local_pher_update_fun", as_pheromone_update(self.local_pher_update_fun))
        except TypeError as exc:
            raise ControlError("local_pher_update_fun", str(exc)) from exc
        try:
            set_(self, "local_search_fun", as_local_search(self.local_search_fun))
        except TypeError as exc:
            raise ControlError("local_search_fun", str(exc)) from exc

        steps = self._check_steps(self.local_search_step)
        set_(self, "local_search_step", steps)
        set_(self, "local_search_schedule", LocalSearchSchedule(steps))
        if self.local_search_fun.enabled and not steps:
            warnings.warn(
                "The given local search procedure will not be applied at any iteration. "
                "Consider setting local_search_step.",
                UserWarning,
                stacklevel=3,
            )

        _check_number("max_time", self.max_time, lower=100)
        if math.isfinite(self.max_time):
            set_(self, "max_time", int(self.max_time))
        _check_int("max_iter", self.max_iter, lower=1)
        if self.global_opt_value is not None:
            _check_number("global_opt_value", self.global_opt_value, finite=True)
        _check_number("termination_eps", self.termination_eps, lower=0.000001, finite=True)
        _check_flag("trace_all", self.trace_all)
        _check_int("time_window", self.time_window, lower=1)

    @staticmethod
    def _check_steps(steps: Any) -> Tuple[int, ...]:
        if steps is None:
            return ()
        if isinstance(steps, numbers.Integral) and not isinstance(steps, bool):
            steps = (steps,)
        try:
            steps = tuple(steps)
        except TypeError as exc:
            raise ControlError("local_search_step", f"must be a collection of integers, got {steps!r}") from exc
        for step in steps:
            _check_int("local_search_step", step, lower=1)
        if len(set(steps)) != len(steps):
            raise ControlError("local_search_step", f"must not contain duplicates, got {steps}")
        return tuple(int(s) for s in steps)

    # ---------- derived values ----------

    @property
    def local_search(self) -> LocalSearch:
        return self.local_search_fun  # type: ignore[return-value]

    @property
    def local_pher_update(self) -> PheromoneUpdate:
        return self.local_pher_update_fun  # type: ignore[return-value]

    @property
    def deposit_policy(self) -> DepositPolicy:
        if self.n_elite == 0:
            return DepositPolicy.GLOBAL_BEST
        if self.best_deposit_only:
            if self.use_global_best:
                return DepositPolicy.SINGLE_BEST_AND_GLOBAL_BEST
            return DepositPolicy.SINGLE_BEST
        if self.use_global_best:
            return DepositPolicy.ELITE_SET_AND_GLOBAL_BEST
        return DepositPolicy.ELITE_SET

    @property
    def elite_percentage(self) -> float:
        return 100 * float(self.n_elite) / float(self.n_ants)

    # ---------- report ----------

    def report(self) -> str:
        """Human-readable description of the control object."""
        lines = ["Ants Control Object", "", "BASE PARAMETERS"]
        if self.n_elite > 0:
            lines.append(
                f"Number of ants: {self.n_ants} with {self.n_elite} elite ants "
                f"({self.elite_percentage:.2f}%)"
            )
        else:
            lines.append(f"Number of ants:        {self.n_ants}")
        lines += [
            f"Alpha:              {self.alpha:.3f}",
            f"Beta:               {self.beta:.3f}",
            f"Rho:                {self.rho:.3f} (evaporation rate)",
            f"Attraction factor:  {self.att_factor:.3f}",
            f"Minimal pheromones: {self.min_pher_conc:.3f}",
            f"Maximal pheromones: {self.max_pher_conc:.3f}",
            f"Initial pheromones: {self.init_pher_conc:.3f}",
            f"Perturbation prob.: {self.prp_prob:.3f}",
            "",
            "DEPOSIT",
            f"Pheromone deposited by: {self.deposit_policy.value}",
            "",
            "LOCAL SEARCH",
        ]
        if self.local_search.enabled:
            lines.append(
                "Local search procedure applied to ant trials "
                + self.local_search_schedule.describe()
            )
        else:
            lines.append("No local search procedure applied.")
        if self.local_pher_update.enabled:
            lines.append("Local pheromone update applied after every construction step.")

        lines += ["", "TERMINATION", f"Maximal iterations: {self.max_iter}"]
        if math.isfinite(self.max_time):
            lines.append(f"Maximal time:       {self.max_time} s")
        else:
            lines.append("Maximal time:       unlimited")
        if self.global_opt_value is not None:
            lines.append(
                f"Known optimum:      {self.global_opt_value:.3f} (eps = {self.termination_eps:g})"
            )
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.report()
