"""
Core ordering module.

Exports:
- OPTICS: Reachability engine
- OrderingEngine: Service-level runner over vector datasets
- IndexedHeap / HeapNode: Indexable priority queue
- CandidateRecord: Queue value type
- ClusterOrder / ClusterOrderEntry: Result container
- Distance functions and neighborhood oracles
"""

from reachability.core.candidate import CandidateRecord
from reachability.core.cluster_order import ClusterOrder, ClusterOrderEntry
from reachability.core.distance import (
    CosineDistance,
    DistanceFunction,
    EuclideanDistance,
    ManhattanDistance,
    VectorDistanceFunction,
    get_distance_function,
)
from reachability.core.neighborhood import (
    BruteForceNeighborhood,
    FAISSNeighborhood,
    NeighborhoodOracle,
    QueryResult,
)
from reachability.core.optics import OPTICS
from reachability.core.ordering_engine import OrderingEngine
from reachability.core.priority_queue import HeapNode, IndexedHeap

__all__ = [
    "OPTICS",
    "OrderingEngine",
    "IndexedHeap",
    "HeapNode",
    "CandidateRecord",
    "ClusterOrder",
    "ClusterOrderEntry",
    "DistanceFunction",
    "VectorDistanceFunction",
    "EuclideanDistance",
    "ManhattanDistance",
    "CosineDistance",
    "get_distance_function",
    "NeighborhoodOracle",
    "BruteForceNeighborhood",
    "FAISSNeighborhood",
    "QueryResult",
]
