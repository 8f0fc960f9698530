"""
OPTICS Reachability Engine.

Ordering Points To Identify the Clustering Structure: walks a dataset in
density-reachability order so that its hierarchical, density-based cluster
structure can be read off one linear sequence (the cluster order).

Each object moves through Unseen -> Queued -> Committed. Committed is
terminal: an object is appended to the cluster order exactly once, and its
predecessor and reachability are final at that moment.
"""

from typing import Any, Callable, Dict, Hashable, Iterable, List, NamedTuple, Optional, Set

from reachability.core.candidate import CandidateRecord
from reachability.core.cluster_order import ClusterOrder
from reachability.core.distance import DistanceFunction
from reachability.core.neighborhood import NeighborhoodOracle, QueryResult
from reachability.core.priority_queue import IndexedHeap
from reachability.utils.advanced_logging import ProgressLogger, get_logger
from reachability.utils.error_handling import ConfigurationError, OracleFailure


class AlgorithmDescription(NamedTuple):
    title: str
    summary: str
    description: str
    reference: str


class _RunState:
    """Per-run mutable state; created in run() and never exposed."""

    def __init__(self, progress: Optional[ProgressLogger], compare: Callable[[Any, Any], int]):
        self.cluster_order = ClusterOrder()
        self.processed: Set[Hashable] = set()
        self.heap = IndexedHeap(compare)
        self.progress = progress

    def commit(self, object_id: Hashable, predecessor_id: Optional[Hashable], reachability: Any) -> None:
        self.cluster_order.append(object_id, predecessor_id, reachability)
        self.processed.add(object_id)
        if self.progress is not None:
            self.progress.advance_to(len(self.processed))


class OPTICS:
    """
    OPTICS over an abstract metric space.

    The engine is parameterised by a distance function (sentinel, ordering,
    maximum, epsilon parsing) and a neighborhood oracle (range queries). It
    never computes distances itself: neighbour distances come from the oracle.
    """

    DESCRIPTION = AlgorithmDescription(
        title="OPTICS",
        summary="Density-Based Hierarchical Clustering",
        description=(
            "Algorithm to find density-connected sets in a database based on the "
            "parameters minimumPoints and epsilon (specifying a volume). These two "
            "parameters determine a density threshold for clustering."
        ),
        reference=(
            "M. Ankerst, M. Breunig, H.-P. Kriegel, and J. Sander: OPTICS: Ordering "
            "Points to Identify the Clustering Structure. In: Proc. ACM SIGMOD Int. "
            "Conf. on Management of Data (SIGMOD '99)"
        ),
    )

    def __init__(
        self,
        distance_function: DistanceFunction,
        neighborhood: NeighborhoodOracle,
        epsilon: Any,
        min_pts: int,
        verbose: bool = False,
        progress_interval: int = 100,
    ):
        """
        Initialize the engine.

        Args:
            distance_function: Distance domain (sentinel, ordering, parsing)
            neighborhood: Range query oracle over the dataset
            epsilon: Neighborhood radius, parsed with distance_function.value_of
            min_pts: Neighbours (including the object itself) needed for a core object
            verbose: Log progress while expanding
            progress_interval: Commits between progress log lines

        Raises:
            ConfigurationError: If min_pts < 1 or epsilon cannot be parsed
        """
        if isinstance(min_pts, bool) or not isinstance(min_pts, int) or min_pts < 1:
            raise ConfigurationError(
                f"min_pts must be a positive integer, got {min_pts!r}",
                details={"min_pts": repr(min_pts)},
            )

        try:
            parsed_epsilon = distance_function.value_of(epsilon)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid epsilon {epsilon!r}: {e}",
                details={"epsilon": repr(epsilon)},
            ) from e

        self.distance_function = distance_function
        self.neighborhood = neighborhood
        self._epsilon = parsed_epsilon
        self.min_pts = min_pts
        self.verbose = verbose
        self.progress_interval = progress_interval

        self.logger = get_logger(__name__)

    @property
    def epsilon(self) -> Any:
        """The parsed neighborhood radius."""
        return self._epsilon

    def run(self, object_ids: Iterable[Hashable]) -> ClusterOrder:
        """
        Compute the cluster order of a dataset.

        Args:
            object_ids: Every object id of the dataset in natural iteration order

        Returns:
            The completed ClusterOrder, owned by the caller

        Raises:
            OracleFailure: If a range query failed; the partial order is attached
                to the exception as `cluster_order` and marked invalid
        """
        ids: List[Hashable] = list(object_ids)
        progress = None
        if self.verbose:
            progress = ProgressLogger(
                total_items=len(ids),
                operation="optics_expand",
                log_interval=self.progress_interval,
                logger=self.logger,
            )

        state = _RunState(progress, self.distance_function.compare)
        self.logger.info(
            "optics_run_started",
            objects=len(ids),
            epsilon=self._epsilon,
            min_pts=self.min_pts,
            distance_function=getattr(self.distance_function, "name", repr(self.distance_function)),
        )

        try:
            for object_id in ids:
                if object_id not in state.processed:
                    self._expand_cluster_order(state, object_id)
        except OracleFailure as e:
            state.cluster_order.invalidate(e.message)
            e.cluster_order = state.cluster_order
            e.details["committed"] = len(state.cluster_order)
            self.logger.error(
                "optics_run_aborted",
                committed=len(state.cluster_order),
                objects=len(ids),
                error=e.message,
            )
            raise

        state.cluster_order.mark_complete()
        if progress is not None:
            progress.finish()

        self.logger.info(
            "optics_run_completed",
            objects=len(state.cluster_order),
            runs=len(state.cluster_order.run_starts()),
        )
        return state.cluster_order

    def _expand_cluster_order(self, state: _RunState, object_id: Hashable) -> None:
        """Commit object_id as the start of a new run and drain its frontier."""
        state.commit(object_id, None, self.distance_function.infinite_distance())

        neighbours = self._range_query(object_id)
        core_distance = self._core_distance(neighbours)
        if self.distance_function.is_infinite(core_distance):
            return

        self._update_candidates(state, object_id, neighbours, core_distance)

        while not state.heap.is_empty():
            node = state.heap.extract_min()
            current = node.value
            state.commit(current.object_id, current.predecessor_id, node.key)

            neighbours = self._range_query(current.object_id)
            core_distance = self._core_distance(neighbours)
            if not self.distance_function.is_infinite(core_distance):
                self._update_candidates(state, current.object_id, neighbours, core_distance)

    def _update_candidates(
        self,
        state: _RunState,
        predecessor_id: Hashable,
        neighbours: List[QueryResult],
        core_distance: Any,
    ) -> None:
        for neighbour in neighbours:
            if neighbour.object_id in state.processed:
                continue

            reachability = self.distance_function.maximum(neighbour.distance, core_distance)
            state.heap.decrease_or_replace(
                neighbour.object_id,
                reachability,
                CandidateRecord(neighbour.object_id, predecessor_id),
            )

    def _core_distance(self, neighbours: List[QueryResult]) -> Any:
        """Distance to the min_pts-th nearest neighbour, or infinity."""
        if len(neighbours) < self.min_pts:
            return self.distance_function.infinite_distance()
        return neighbours[self.min_pts - 1].distance

    def _range_query(self, object_id: Hashable) -> List[QueryResult]:
        try:
            return list(self.neighborhood.range_query(object_id, self._epsilon))
        except OracleFailure:
            raise
        except Exception as e:
            raise OracleFailure(
                f"Range query for {object_id!r} failed: {e}",
                details={"object_id": repr(object_id), "error_type": type(e).__name__},
            ) from e

    # =========================================================================
    # Reporting
    # =========================================================================

    def description(self) -> AlgorithmDescription:
        return self.DESCRIPTION

    def attribute_settings(self) -> Dict[str, Any]:
        """Parameter settings of this engine, for reproducibility reports."""
        return {
            "algorithm": self.DESCRIPTION.title,
            "epsilon": str(self._epsilon),
            "min_pts": self.min_pts,
            "distance_function": getattr(
                self.distance_function, "name", type(self.distance_function).__name__
            ),
        }
