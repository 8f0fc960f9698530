"""
Integration tests for the ordering pipeline.

Tests the full ordering workflow including:
- Oracle construction from configuration
- OPTICS execution through OrderingEngine
- Whole-run retries on oracle failures
- JSONL export of the resulting order
"""

import math
from unittest.mock import patch

import numpy as np
import pytest

from reachability.core.neighborhood import BruteForceNeighborhood
from reachability.core.ordering_engine import OrderingEngine
from reachability.storage.cluster_order_storage import ClusterOrderStorage
from reachability.utils.error_handling import ConfigurationError, OracleFailure


def runs_of(cluster_order):
    """Split a cluster order into lists of object ids, one per run."""
    runs = []
    for entry in cluster_order:
        if entry.starts_run:
            runs.append([])
        runs[-1].append(entry.object_id)
    return runs


@pytest.mark.integration
class TestOrderingPipeline:
    """Integration tests for OrderingEngine."""

    def test_well_separated_blobs_form_one_run_each(self, clustered_vectors):
        """Each blob is density-connected and reached before the next run starts."""
        vectors, labels = clustered_vectors
        engine = OrderingEngine()

        order = engine.order(vectors, epsilon=2.0, min_pts=3)

        assert order.valid and order.complete
        assert len(order) == len(vectors)
        assert order.run_starts() == [0, 20, 40]
        for run in runs_of(order):
            assert len({labels[object_id] for object_id in run}) == 1

    def test_reachability_plot_has_valleys(self, clustered_vectors):
        vectors, _ = clustered_vectors

        order = OrderingEngine().order(vectors, epsilon=2.0, min_pts=3)
        reachability = order.reachability_array()

        assert np.isinf(reachability[[0, 20, 40]]).all()
        finite = np.delete(reachability, [0, 20, 40])
        assert np.isfinite(finite).all()
        assert finite.max() < 2.0

    def test_large_epsilon_links_blobs(self, clustered_vectors):
        vectors, _ = clustered_vectors

        order = OrderingEngine().order(vectors, epsilon=math.inf, min_pts=3)

        assert order.run_starts() == [0]
        assert order.reachability_array()[1:].max() > 5.0

    def test_ordering_is_deterministic(self, random_vectors):
        engine = OrderingEngine()

        first = engine.order(random_vectors, epsilon=0.3, min_pts=4, metric="manhattan")
        second = engine.order(random_vectors, epsilon=0.3, min_pts=4, metric="manhattan")

        assert first.to_records() == second.to_records()
        assert first is not second

    def test_custom_object_ids(self):
        vectors = np.array([[0.0], [1.0], [10.0]])

        order = OrderingEngine().order(vectors, epsilon=2.0, min_pts=2, object_ids=["A", "B", "C"])

        assert order.to_records() == [
            ("A", None, math.inf),
            ("B", "A", 1.0),
            ("C", None, math.inf),
        ]

    def test_run_id_and_engine_recorded(self, random_vectors):
        engine = OrderingEngine()

        engine.order(random_vectors, epsilon=0.3, min_pts=4, run_id="run-42")

        assert engine.last_run_id == "run-42"
        assert engine.last_engine.attribute_settings()["min_pts"] == 4

    def test_export_after_ordering(self, tmp_path, clustered_vectors):
        vectors, _ = clustered_vectors
        engine = OrderingEngine()
        order = engine.order(vectors, epsilon=2.0, min_pts=3)
        storage = ClusterOrderStorage(output_dir=tmp_path)

        records = storage.load(storage.save(order, run_id=engine.last_run_id))

        assert [record.as_tuple() for record in records] == order.to_records()


@pytest.mark.integration
class TestOrderingEngineValidation:
    """Parameter validation before a run starts."""

    @pytest.mark.parametrize("kwargs,field", [
        ({"metric": "hamming"}, "metric"),
        ({"epsilon": -1.0}, "epsilon"),
        ({"epsilon": "wide"}, "epsilon"),
        ({"min_pts": 0}, "min_pts"),
        ({"min_pts": 2.5}, "min_pts"),
        ({"neighborhood": "kdtree"}, "neighborhood"),
        ({"neighborhood": "faiss", "metric": "cosine"}, "neighborhood"),
    ])
    def test_invalid_parameters(self, random_vectors, kwargs, field):
        params = {"epsilon": 0.5, "min_pts": 3, "metric": "euclidean", "neighborhood": "brute_force"}
        params.update(kwargs)

        with pytest.raises(ConfigurationError) as excinfo:
            OrderingEngine().order(random_vectors, **params)

        assert field in excinfo.value.details

    def test_valid_config_has_no_errors(self):
        assert OrderingEngine().validate_config(0.5, np.int64(3), "Euclidean", "BRUTE_FORCE") == {}


class FlakyNeighborhood(BruteForceNeighborhood):
    """Fails the first range query of the whole process, then behaves."""

    failures_left = 1

    def range_query(self, object_id, epsilon):
        if FlakyNeighborhood.failures_left > 0:
            FlakyNeighborhood.failures_left -= 1
            raise ConnectionError("index node restarting")
        return super().range_query(object_id, epsilon)


@pytest.mark.integration
class TestRunRetries:
    """Whole-run retries on oracle failure."""

    @pytest.fixture(autouse=True)
    def _flaky_oracle(self):
        FlakyNeighborhood.failures_left = 1
        with patch("reachability.core.ordering_engine.BruteForceNeighborhood", FlakyNeighborhood), \
                patch("reachability.utils.error_handling.time.sleep"):
            yield

    def test_retry_produces_fresh_complete_order(self, line_points):
        vectors = np.array(list(line_points.values()))

        order = OrderingEngine(run_retries=2).order(vectors, epsilon=2.0, min_pts=2)

        assert order.valid
        assert order.to_records() == [
            (0, None, math.inf),
            (1, 0, 1.0),
            (2, None, math.inf),
        ]

    def test_single_attempt_surfaces_failure(self, line_points):
        vectors = np.array(list(line_points.values()))

        with pytest.raises(OracleFailure) as excinfo:
            OrderingEngine(run_retries=1).order(vectors, epsilon=2.0, min_pts=2)

        assert isinstance(excinfo.value.__cause__, ConnectionError)
        assert not excinfo.value.cluster_order.valid


@pytest.mark.integration
@pytest.mark.requires_faiss
class TestFAISSPipeline:
    """The faiss backend agrees with brute force."""

    def test_same_runs_as_brute_force(self, clustered_vectors):
        pytest.importorskip("faiss")
        vectors, _ = clustered_vectors
        engine = OrderingEngine()

        brute = engine.order(vectors, epsilon=2.0, min_pts=3, neighborhood="brute_force")
        indexed = engine.order(vectors, epsilon=2.0, min_pts=3, neighborhood="faiss")

        assert [sorted(run) for run in runs_of(indexed)] == [sorted(run) for run in runs_of(brute)]
        np.testing.assert_allclose(
            np.sort(indexed.reachability_array()),
            np.sort(brute.reachability_array()),
            atol=1e-4,
        )
