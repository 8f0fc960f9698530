"""
Ordering Engine - runs OPTICS over vector datasets.

Service-level entry point: picks the distance function and the range query
backend from configuration, validates parameters, and times the run.
"""

import logging
import uuid
from typing import Any, Dict, Hashable, Optional, Sequence

import numpy as np

from reachability.core.cluster_order import ClusterOrder
from reachability.core.distance import DISTANCE_FUNCTIONS, get_distance_function
from reachability.core.neighborhood import BruteForceNeighborhood, FAISSNeighborhood
from reachability.core.optics import OPTICS
from reachability.utils.advanced_logging import LogContext, PerformanceLogger, get_logger
from reachability.utils.error_handling import ConfigurationError, OracleFailure, retry

logger = logging.getLogger(__name__)


class OrderingEngine:
    """
    Builds oracles for a vector dataset and runs OPTICS on them.

    The engine keeps no state between calls: every order() call gets its own
    oracle, OPTICS instance and cluster order.
    """

    NEIGHBORHOODS = ("brute_force", "faiss")

    def __init__(self, use_gpu: bool = False, run_retries: int = 1):
        """
        Initialize ordering engine.

        Args:
            use_gpu: Let the faiss backend move its index to GPU
            run_retries: Attempts for a whole run when a range query fails
        """
        self.use_gpu = use_gpu
        self.run_retries = max(1, run_retries)
        self.last_run_id: Optional[str] = None
        self.last_engine: Optional[OPTICS] = None
        logger.info("Initialized OrderingEngine")

    def order(
        self,
        vectors: np.ndarray,
        epsilon: Any,
        min_pts: int,
        metric: str = "euclidean",
        neighborhood: str = "brute_force",
        object_ids: Optional[Sequence[Hashable]] = None,
        verbose: bool = False,
        progress_interval: int = 100,
        run_id: Optional[str] = None,
    ) -> ClusterOrder:
        """
        Compute the cluster order of a vector dataset.

        Args:
            vectors: Data vectors (N x D)
            epsilon: Neighborhood radius
            min_pts: Minimum neighbours for a core object
            metric: Distance metric name
            neighborhood: Range query backend (brute_force/faiss)
            object_ids: Optional ids per row (defaults to row numbers)
            verbose: Log expansion progress
            progress_interval: Commits between progress log lines
            run_id: Run identifier for logging (generated if omitted)

        Returns:
            Completed ClusterOrder

        Raises:
            ConfigurationError: If the parameters are invalid
            OracleFailure: If range queries kept failing for every attempt
        """
        errors = self.validate_config(epsilon, min_pts, metric, neighborhood)
        if errors:
            raise ConfigurationError(
                f"Invalid ordering configuration: {errors}",
                details=errors,
            )

        metric = metric.lower()
        neighborhood = neighborhood.lower()
        min_pts = int(min_pts)

        vectors = np.asarray(vectors)
        if vectors.ndim == 1:
            vectors = vectors.reshape(-1, 1)

        run_id = run_id or uuid.uuid4().hex[:12]
        self.last_run_id = run_id

        distance_function = get_distance_function(metric)
        oracle = self._build_neighborhood(neighborhood, vectors, object_ids, distance_function)
        engine = OPTICS(
            distance_function,
            oracle,
            epsilon=epsilon,
            min_pts=min_pts,
            verbose=verbose,
            progress_interval=progress_interval,
        )
        self.last_engine = engine

        @retry(
            max_attempts=self.run_retries,
            initial_delay=0.5,
            retriable_exceptions=(OracleFailure,),
        )
        def _run() -> ClusterOrder:
            return engine.run(oracle.object_ids)

        with LogContext.run_context(run_id):
            with PerformanceLogger(
                "optics_ordering",
                logger=get_logger(__name__),
                item_count=len(vectors),
                metric=metric,
                neighborhood=neighborhood,
            ):
                cluster_order = _run()

        logger.info(
            f"Ordering {run_id} complete: {len(cluster_order)} objects, "
            f"{len(cluster_order.run_starts())} runs"
        )
        return cluster_order

    def _build_neighborhood(self, name, vectors, object_ids, distance_function):
        if name == "faiss":
            return FAISSNeighborhood(vectors, object_ids=object_ids, use_gpu=self.use_gpu)
        return BruteForceNeighborhood(vectors, distance_function, object_ids=object_ids)

    def validate_config(
        self,
        epsilon: Any,
        min_pts: Any,
        metric: str,
        neighborhood: str,
    ) -> Dict[str, str]:
        """
        Validate ordering parameters.

        Returns:
            Dictionary of validation errors (empty if valid)
        """
        errors = {}

        metric = (metric or "").lower()
        neighborhood = (neighborhood or "").lower()

        if metric not in DISTANCE_FUNCTIONS:
            errors["metric"] = f"Unsupported metric '{metric}'"
        else:
            try:
                get_distance_function(metric).value_of(epsilon)
            except ValueError as e:
                errors["epsilon"] = str(e)

        if isinstance(min_pts, bool) or not isinstance(min_pts, (int, np.integer)) or min_pts < 1:
            errors["min_pts"] = "Must be an integer >= 1"

        if neighborhood not in self.NEIGHBORHOODS:
            errors["neighborhood"] = f"Unsupported neighborhood '{neighborhood}'"
        elif neighborhood == "faiss" and metric != "euclidean":
            errors["neighborhood"] = "The faiss backend only supports the euclidean metric"

        return errors
