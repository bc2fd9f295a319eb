from __future__ import annotations

from typing import List, Optional, Sequence, TYPE_CHECKING

from control import ACOTSPControl, DepositPolicy
from pheromone import PheromoneMatrix
from utils import rank_by_length

if TYPE_CHECKING:
    from aco import Tour


def select_depositors(
    tours: Sequence["Tour"],
    policy: DepositPolicy,
    n_elite: int,
    global_best: Optional["Tour"] = None,
) -> List["Tour"]:
    """
    Tours that deposit pheromone this iteration.

    Iteration tours are ranked by length; equal lengths keep ant order, so the
    selection is reproducible under a fixed seed.
    """
    ranking = rank_by_length([t.length for t in tours])
    n_iter = min(policy.n_iteration_depositors(n_elite), len(tours))
    depositors = [tours[i] for i in ranking[:n_iter]]
    if policy.uses_global_best and global_best is not None:
        depositors.append(global_best)
    return depositors


def update_pheromones(
    pheromone: PheromoneMatrix,
    tours: Sequence["Tour"],
    control: ACOTSPControl,
    global_best: Optional["Tour"] = None,
) -> List["Tour"]:
    """Evaporate, deposit Q / length along every depositing tour, clamp.

    Returns:
        The tours that deposited.
    """
    pheromone.evaporate(control.rho)
    depositors = select_depositors(tours, control.deposit_policy, control.n_elite, global_best)
    for tour in depositors:
        if tour.length > 0:
            pheromone.deposit(tour.nodes, control.q / tour.length)
    pheromone.clamp()
    return depositors
