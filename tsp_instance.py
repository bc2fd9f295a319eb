from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from utils import build_distance_matrix


def generate_cities(num_cities: int = 10, seed: int | None = None) -> np.ndarray:
    rng = np.random.default_rng(seed)
    cities = rng.random((num_cities, 2))
    return cities


def get_city_labels(num_cities: int) -> List[str]:
    labels: List[str] = []
    alphabet = [chr(ord("A") + i) for i in range(26)]

    count = num_cities
    prefix_index = 0

    while count > 0:
        for letter in alphabet:
            if count <= 0:
                break
            if prefix_index == 0:
                labels.append(letter)
            else:
                labels.append(alphabet[prefix_index - 1] + letter)
            count -= 1
        prefix_index += 1

    return labels[:num_cities]


@dataclass
class TSPInstance:
    """
    A fixed node set with its symmetric cost matrix.

    The distance matrix is copied and made read-only on construction, so it
    can be shared by every ant (and every worker thread) of a run.
    """

    distance_matrix: np.ndarray
    cities: Optional[np.ndarray] = None
    labels: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        dist = np.array(self.distance_matrix, dtype=float)
        if dist.ndim != 2 or dist.shape[0] != dist.shape[1]:
            raise ValueError(f"Distance matrix must be square, got shape {dist.shape}.")
        if dist.shape[0] < 2:
            raise ValueError("Distance matrix must cover at least 2 cities.")
        if not np.all(np.isfinite(dist)):
            raise ValueError("Distance matrix must only contain finite values.")
        if np.any(dist < 0):
            raise ValueError("Distance matrix must be non-negative.")
        if not np.allclose(dist, dist.T):
            raise ValueError("Distance matrix must be symmetric.")
        if np.any(np.diag(dist) != 0):
            raise ValueError("Distance matrix must have a zero diagonal.")

        dist.setflags(write=False)
        self.distance_matrix = dist
        if not self.labels:
            self.labels = get_city_labels(self.num_cities)
        elif len(self.labels) != self.num_cities:
            raise ValueError(
                f"Expected {self.num_cities} labels, got {len(self.labels)}."
            )

    @property
    def num_cities(self) -> int:
        return self.distance_matrix.shape[0]

    @classmethod
    def from_cities(cls, cities: np.ndarray, labels: Sequence[str] | None = None) -> "TSPInstance":
        cities = np.asarray(cities, dtype=float)
        return cls(
            distance_matrix=build_distance_matrix(cities),
            cities=cities,
            labels=list(labels) if labels else [],
        )

    @classmethod
    def random(cls, num_cities: int = 10, seed: int | None = None) -> "TSPInstance":
        return cls.from_cities(generate_cities(num_cities, seed))
