from __future__ import annotations

import numbers
from typing import List, Sequence, Tuple

import numpy as np


def build_distance_matrix(cities: np.ndarray) -> np.ndarray:
    """Euclidean distance matrix for an (n, 2) array of coordinates."""
    cities = np.asarray(cities, dtype=float)
    diff = cities[:, None, :] - cities[None, :, :]
    dist_matrix = np.sqrt((diff ** 2).sum(axis=-1))
    np.fill_diagonal(dist_matrix, 0.0)
    return dist_matrix


def tour_edges(route: Sequence[int]) -> Tuple[np.ndarray, np.ndarray]:
    """Return (from, to) index arrays of the closed tour, return edge included."""
    nodes = np.asarray(route, dtype=np.int64)
    return nodes, np.roll(nodes, -1)


def compute_route_length(route: Sequence[int], distance_matrix: np.ndarray) -> float:
    """Length of a tour, including return to the starting city."""
    if len(route) < 2:
        return 0.0
    src, dst = tour_edges(route)
    return float(distance_matrix[src, dst].sum())


def validate_route(route: Sequence[int], num_cities: int) -> Tuple[bool, str]:
    """Check that `route` is a permutation of range(num_cities)."""
    if route is None:
        return False, "No route given."
    try:
        route = list(route)
    except TypeError:
        return False, "Route must be a sequence of integer city indices."
    # bool is an Integral too, but never a city index
    if any(isinstance(i, bool) or not isinstance(i, (numbers.Integral, np.integer)) for i in route):
        return False, "Route must be a sequence of integer city indices."
    route = [int(i) for i in route]

    if len(route) != num_cities:
        return (
            False,
            f"Route must contain exactly {num_cities} cities. "
            f"Currently, it has {len(route)} entries.",
        )

    if min(route) < 0 or max(route) >= num_cities:
        return False, "Invalid city index detected."

    if len(set(route)) != num_cities:
        return False, "Each city must appear exactly once in the route."

    return True, "Route is valid."


def rank_by_length(lengths: Sequence[float]) -> List[int]:
    """Indices sorted by length; ties keep the lower index first."""
    return sorted(range(len(lengths)), key=lambda i: (lengths[i], i))
