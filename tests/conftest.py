"""
Pytest configuration and shared fixtures for the OPTICS reachability tests.

This module provides:
- Small hand-checkable datasets
- Clustered vector generators
- Fake neighborhood oracles
- Settings and logging isolation
"""

import logging
import os
from typing import Dict, List

import numpy as np
import pytest
import structlog

from reachability.config.settings_loader import ConfigManager
from reachability.core.distance import EuclideanDistance
from reachability.core.neighborhood import BruteForceNeighborhood, QueryResult

# Set test environment variables
os.environ["TESTING"] = "true"


# =============================================================================
# Test Data Generators
# =============================================================================

@pytest.fixture
def line_points():
    """Objects A, B, C on a line at positions 0, 1 and 10."""
    return {"A": [0.0], "B": [1.0], "C": [10.0]}


@pytest.fixture
def line_oracle(line_points):
    """Brute-force oracle over line_points."""
    return BruteForceNeighborhood(line_points, EuclideanDistance())


@pytest.fixture
def clustered_vectors():
    """
    Generate 2-D vectors with clear cluster structure.

    Creates 3 well separated blobs of 20 points each:
    - Cluster 0: centered at (0, 0)
    - Cluster 1: centered at (10, 10)
    - Cluster 2: centered at (20, 0)
    """
    np.random.seed(42)
    n_per_cluster = 20
    centers = np.array([[0.0, 0.0], [10.0, 10.0], [20.0, 0.0]])

    vectors = []
    labels = []
    for label, center in enumerate(centers):
        vectors.append(center + np.random.randn(n_per_cluster, 2) * 0.3)
        labels.extend([label] * n_per_cluster)

    return np.vstack(vectors), np.array(labels)


@pytest.fixture
def random_vectors():
    """Generate 50 random 3-D vectors without structure."""
    np.random.seed(7)
    return np.random.rand(50, 3)


# =============================================================================
# Oracle Fixtures
# =============================================================================

class FakeNeighborhood:
    """Range query oracle answering from a fixed table of results."""

    def __init__(self, table: Dict[str, List[QueryResult]]):
        self.table = table
        self.calls: List[str] = []

    @property
    def object_ids(self):
        return list(self.table)

    def range_query(self, object_id, epsilon):
        self.calls.append(object_id)
        return [hit for hit in self.table[object_id] if hit.distance <= epsilon]


class FailingNeighborhood:
    """Delegates to another oracle and raises after a number of queries."""

    def __init__(self, delegate, fail_after: int, error: Exception = None):
        self.delegate = delegate
        self.fail_after = fail_after
        self.error = error or RuntimeError("index unavailable")
        self.calls = 0

    @property
    def object_ids(self):
        return self.delegate.object_ids

    def range_query(self, object_id, epsilon):
        self.calls += 1
        if self.calls > self.fail_after:
            raise self.error
        return self.delegate.range_query(object_id, epsilon)


@pytest.fixture
def fake_neighborhood_factory():
    return FakeNeighborhood


@pytest.fixture
def failing_neighborhood_factory():
    return FailingNeighborhood


# =============================================================================
# Settings and logging isolation
# =============================================================================

@pytest.fixture(autouse=True)
def reset_settings():
    """Drop cached settings before and after each test."""
    ConfigManager.reset()
    yield
    ConfigManager.reset()


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo handlers and structlog configuration installed by a test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    structlog.reset_defaults()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests for individual components"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests for component interactions"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests for full workflows"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take >1 second"
    )
    config.addinivalue_line(
        "markers", "requires_faiss: Tests requiring faiss"
    )
