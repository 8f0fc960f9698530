"""
Neighborhood oracles - range queries for the reachability engine.

An oracle answers "which objects lie within radius epsilon of X", returning
(object_id, distance) pairs sorted ascending by distance with ties broken by
object id. The radius is inclusive and the query object itself is part of
its own neighborhood (distance 0).

Two backends are provided:
- BruteForceNeighborhood: numpy linear scan with any VectorDistanceFunction
- FAISSNeighborhood: faiss IndexFlatL2 range search (euclidean only)
"""

import logging
import math
from typing import Any, Hashable, List, Mapping, NamedTuple, Optional, Protocol, Sequence, Union

import numpy as np

from reachability.core.distance import VectorDistanceFunction
from reachability.utils.faiss_utils import get_faiss, move_index_to_gpu

logger = logging.getLogger(__name__)


class QueryResult(NamedTuple):
    """A single range query hit."""

    object_id: Hashable
    distance: Any


class NeighborhoodOracle(Protocol):
    """Range query capability consumed by the OPTICS engine."""

    def range_query(self, object_id: Hashable, epsilon: Any) -> List[QueryResult]:
        ...


def _sorted_hits(ids: Sequence[Hashable], distances: np.ndarray) -> List[QueryResult]:
    hits = [QueryResult(object_id, float(d)) for object_id, d in zip(ids, distances)]
    hits.sort(key=lambda hit: (hit.distance, hit.object_id))
    return hits


class _VectorDataset:
    """Object ids and their vectors stacked into one matrix."""

    def __init__(
        self,
        objects: Union[np.ndarray, Mapping[Hashable, Any]],
        object_ids: Optional[Sequence[Hashable]] = None,
        dtype: Any = np.float64,
    ):
        if isinstance(objects, Mapping):
            ids = list(objects.keys()) if object_ids is None else list(object_ids)
            rows = [np.asarray(objects[object_id], dtype=dtype).ravel() for object_id in ids]
            matrix = np.vstack(rows) if rows else np.zeros((0, 0), dtype=dtype)
        else:
            matrix = np.asarray(objects, dtype=dtype)
            if matrix.ndim == 1:
                matrix = matrix.reshape(-1, 1)
            ids = list(range(len(matrix))) if object_ids is None else list(object_ids)

        if len(ids) != len(matrix):
            raise ValueError(
                f"Got {len(ids)} object ids for {len(matrix)} vectors"
            )
        if len(set(ids)) != len(ids):
            raise ValueError("Object ids must be unique")

        self.object_ids: List[Hashable] = ids
        self.matrix = np.ascontiguousarray(matrix)
        self.rows = {object_id: i for i, object_id in enumerate(ids)}

    def __len__(self) -> int:
        return len(self.object_ids)

    def vector(self, object_id: Hashable) -> np.ndarray:
        return self.matrix[self.rows[object_id]]


class BruteForceNeighborhood:
    """
    Linear-scan range queries over an in-memory vector dataset.

    Each query computes distances to every object with the configured
    distance function, so a query costs O(N * D).
    """

    def __init__(
        self,
        objects: Union[np.ndarray, Mapping[Hashable, Any]],
        distance_function: VectorDistanceFunction,
        object_ids: Optional[Sequence[Hashable]] = None,
    ):
        """
        Initialize the oracle.

        Args:
            objects: N x D array (ids default to row numbers) or id -> vector mapping
            distance_function: Metric used for all queries
            object_ids: Optional ids, one per row / in mapping order
        """
        self.dataset = _VectorDataset(objects, object_ids)
        self.distance_function = distance_function
        self.query_count = 0

        logger.debug(
            f"BruteForceNeighborhood initialized ({len(self.dataset)} objects, "
            f"metric={distance_function.name})"
        )

    @property
    def object_ids(self) -> List[Hashable]:
        return list(self.dataset.object_ids)

    def range_query(self, object_id: Hashable, epsilon: float) -> List[QueryResult]:
        """
        Return every object within epsilon of object_id (inclusive).

        Raises:
            KeyError: If object_id is not part of the dataset
        """
        self.query_count += 1
        query = self.dataset.vector(object_id)
        distances = self.distance_function.distances(query, self.dataset.matrix)

        mask = distances <= epsilon
        hit_rows = np.flatnonzero(mask)
        ids = [self.dataset.object_ids[row] for row in hit_rows]
        return _sorted_hits(ids, distances[hit_rows])


class FAISSNeighborhood:
    """
    Euclidean range queries backed by a faiss flat L2 index.

    faiss works in float32 and range_search keeps hits strictly below the
    radius. The index is searched with a slightly widened squared radius and
    the hits are then re-measured in float64 and filtered with
    `distance <= epsilon`, so a distance reported by one query is always
    inside a later query that uses it as the radius.
    """

    name = "euclidean"

    # Relative widening of the squared radius passed to faiss
    RADIUS_TOLERANCE = 1e-4

    def __init__(
        self,
        vectors: np.ndarray,
        object_ids: Optional[Sequence[Hashable]] = None,
        use_gpu: bool = False,
    ):
        """
        Build the index.

        Args:
            vectors: N x D array
            object_ids: Optional ids, one per row (defaults to row numbers)
            use_gpu: Move the index to GPU 0 when faiss-gpu is available
        """
        faiss = get_faiss()
        self.dataset = _VectorDataset(vectors, object_ids, dtype=np.float32)
        self.query_count = 0

        dimension = self.dataset.matrix.shape[1]
        index = faiss.IndexFlatL2(dimension)
        if len(self.dataset):
            index.add(self.dataset.matrix)
        self.index = move_index_to_gpu(index) if use_gpu else index

        logger.info(
            f"FAISSNeighborhood initialized ({len(self.dataset)} vectors, dim={dimension}, gpu={use_gpu})"
        )

    @property
    def object_ids(self) -> List[Hashable]:
        return list(self.dataset.object_ids)

    def range_query(self, object_id: Hashable, epsilon: float) -> List[QueryResult]:
        """
        Return every object within epsilon of object_id (inclusive).

        Raises:
            KeyError: If object_id is not part of the dataset
        """
        self.query_count += 1
        query = self.dataset.vector(object_id)

        lims, _, rows = self.index.range_search(query.reshape(1, -1), self._search_radius(epsilon))
        rows = np.sort(rows[lims[0]:lims[1]])

        distances = self._exact_distances(query, rows)
        keep = distances <= epsilon
        ids = [self.dataset.object_ids[row] for row in rows[keep]]
        return _sorted_hits(ids, distances[keep])

    def _search_radius(self, epsilon: float) -> float:
        float32_max = float(np.finfo(np.float32).max)
        if math.isinf(epsilon):
            return float32_max

        widened = float(epsilon) ** 2 * (1.0 + self.RADIUS_TOLERANCE)
        if widened >= float32_max:
            return float32_max
        # faiss keeps d < radius, so a zero radius would drop exact duplicates
        return float(np.nextafter(np.float32(widened), np.float32(np.inf)))

    def _exact_distances(self, query: np.ndarray, rows: np.ndarray) -> np.ndarray:
        """float64 euclidean distances from query to the given index rows."""
        diff = self.dataset.matrix[rows].astype(np.float64) - query.astype(np.float64)
        return np.sqrt(np.einsum("ij,ij->i", diff, diff))
