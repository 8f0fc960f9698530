"""
Distance functions for the reachability engine.

The engine only depends on the DistanceFunction protocol: a totally ordered
distance domain with an infinite sentinel, a maximum and a parser for
epsilon. The vector metrics below are the concrete implementations the
service ships with; all of them use float distances and math.inf as the
sentinel.
"""

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Protocol, Type

import numpy as np

from reachability.utils.error_handling import ConfigurationError


class DistanceFunction(Protocol):
    """Capabilities the OPTICS engine needs from a distance domain."""

    name: str

    def distance(self, x: Any, y: Any) -> Any:
        ...

    def infinite_distance(self) -> Any:
        ...

    def is_infinite(self, d: Any) -> bool:
        ...

    def compare(self, d1: Any, d2: Any) -> int:
        ...

    def maximum(self, d1: Any, d2: Any) -> Any:
        ...

    def value_of(self, text: Any) -> Any:
        ...


class VectorDistanceFunction(ABC):
    """
    Base class for float-valued metrics over numpy vectors.

    Subclasses implement distances(), the vectorised distance from one point
    to every row of a matrix; distance() is derived from it.
    """

    name = "vector"

    @abstractmethod
    def distances(self, x: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        """
        Distances from x to each row of matrix.

        Args:
            x: Query vector (D,)
            matrix: Data vectors (N x D)

        Returns:
            Array of N float distances
        """
        pass

    def distance(self, x: np.ndarray, y: np.ndarray) -> float:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64).reshape(1, -1)
        return float(self.distances(x, y)[0])

    def infinite_distance(self) -> float:
        return math.inf

    def is_infinite(self, d: float) -> bool:
        return math.isinf(d)

    def compare(self, d1: float, d2: float) -> int:
        if d1 < d2:
            return -1
        if d1 > d2:
            return 1
        return 0

    def maximum(self, d1: float, d2: float) -> float:
        return d1 if self.compare(d1, d2) >= 0 else d2

    def value_of(self, text: Any) -> float:
        """
        Parse a distance value (e.g. epsilon) in this domain.

        Raises:
            ValueError: If text is not a non-negative number
        """
        try:
            value = float(text)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{text!r} is not a valid {self.name} distance") from e

        if math.isnan(value) or value < 0:
            raise ValueError(f"{text!r} is not a valid {self.name} distance")
        return value

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class EuclideanDistance(VectorDistanceFunction):
    """L2 distance."""

    name = "euclidean"

    def distances(self, x: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        diff = matrix - x
        return np.sqrt(np.einsum("ij,ij->i", diff, diff))


class ManhattanDistance(VectorDistanceFunction):
    """L1 distance."""

    name = "manhattan"

    def distances(self, x: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        return np.abs(matrix - x).sum(axis=1)


class CosineDistance(VectorDistanceFunction):
    """
    1 - cosine similarity.

    A zero vector is at distance 1 from every non-zero vector and at
    distance 0 from other zero vectors.
    """

    name = "cosine"

    def distances(self, x: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        row_norms = np.linalg.norm(matrix, axis=1)
        query_norm = np.linalg.norm(x)
        norms = row_norms * query_norm
        dots = matrix @ x
        with np.errstate(divide="ignore", invalid="ignore"):
            similarity = np.where(norms > 0, dots / norms, 0.0)
        result = np.clip(1.0 - similarity, 0.0, 2.0)
        if query_norm == 0:
            result[row_norms == 0] = 0.0
        return result


DISTANCE_FUNCTIONS: Dict[str, Type[VectorDistanceFunction]] = {
    "euclidean": EuclideanDistance,
    "manhattan": ManhattanDistance,
    "cosine": CosineDistance,
}


def get_distance_function(name: str) -> VectorDistanceFunction:
    """
    Instantiate a distance function by metric name.

    Raises:
        ConfigurationError: If the metric is unknown
    """
    metric = name.lower()
    if metric not in DISTANCE_FUNCTIONS:
        raise ConfigurationError(
            f"Unsupported metric '{name}'. Supported: {list(DISTANCE_FUNCTIONS.keys())}",
            details={"metric": name},
        )
    return DISTANCE_FUNCTIONS[metric]()
