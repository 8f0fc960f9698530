"""
Indexable min-priority queue for OPTICS.

A binary min-heap stored in a flat list plus an object_id -> position map that
is updated on every swap, insert and removal. The map lets a queued candidate
be found and its key decreased in O(log n) without scanning the heap.

Heap order is (key, object_id), which makes extraction order among equal keys
independent of insertion history. Keys are ordered by a three-way comparator
(negative, zero, positive), normally DistanceFunction.compare.
"""

from typing import Any, Callable, Dict, Hashable, List, Optional

from reachability.core.candidate import CandidateRecord
from reachability.utils.error_handling import EmptyQueueError


def _natural_compare(a: Any, b: Any) -> int:
    if a < b:
        return -1
    if b < a:
        return 1
    return 0


class HeapNode:
    """Heap entry: reachability key, candidate value and current position."""

    __slots__ = ("key", "value", "position")

    def __init__(self, key: Any, value: CandidateRecord, position: int = -1):
        self.key = key
        self.value = value
        self.position = position

    @property
    def object_id(self) -> Hashable:
        return self.value.object_id

    def __repr__(self) -> str:
        return f"HeapNode(key={self.key!r}, value={self.value!r}, position={self.position})"


class IndexedHeap:
    """
    Min-heap over (reachability, candidate) supporting decrease-key by object id.

    Invariants:
        - self._nodes satisfies the min-heap property on (key, object_id)
        - self._positions[node.object_id] == node.position == index of node
        - every object id occurs at most once
    """

    def __init__(self, compare: Optional[Callable[[Any, Any], int]] = None):
        """
        Args:
            compare: Three-way key comparator; natural `<` ordering when omitted
        """
        self._compare = compare or _natural_compare
        self._nodes: List[HeapNode] = []
        self._positions: Dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, object_id: Hashable) -> bool:
        return object_id in self._positions

    def is_empty(self) -> bool:
        return not self._nodes

    def index_of(self, object_id: Hashable) -> Optional[int]:
        """Return the position of the live entry for object_id, or None."""
        return self._positions.get(object_id)

    def node_at(self, position: int) -> HeapNode:
        return self._nodes[position]

    def insert(self, key: Any, value: CandidateRecord) -> HeapNode:
        """
        Add a new entry.

        Raises:
            ValueError: If value.object_id already has an entry
        """
        if value.object_id in self._positions:
            raise ValueError(f"Object {value.object_id!r} is already queued")

        node = HeapNode(key, value, len(self._nodes))
        self._nodes.append(node)
        self._positions[value.object_id] = node.position
        self._flow_up(node.position)
        return node

    def peek(self) -> HeapNode:
        """Return the minimum entry without removing it."""
        if not self._nodes:
            raise EmptyQueueError("peek on empty queue")
        return self._nodes[0]

    def extract_min(self) -> HeapNode:
        """
        Remove and return the minimum entry.

        Raises:
            EmptyQueueError: If the queue is empty
        """
        if not self._nodes:
            raise EmptyQueueError("extract_min on empty queue")

        last = len(self._nodes) - 1
        self._swap(0, last)
        node = self._nodes.pop()
        del self._positions[node.object_id]

        if self._nodes:
            self._flow_down(0)

        node.position = -1
        return node

    def decrease_or_replace(self, object_id: Hashable, key: Any, value: CandidateRecord) -> bool:
        """
        Insert a candidate or improve the queued one for object_id.

        An existing entry is kept when its key is strictly smaller, or when the
        keys are equal and its predecessor id is smaller than the new one.
        Otherwise the entry is overwritten in place and moved toward the root.

        Returns:
            True if the queue changed, False if the call was a no-op
        """
        if value.object_id != object_id:
            raise ValueError(
                f"Candidate for {value.object_id!r} passed under object id {object_id!r}"
            )

        position = self.index_of(object_id)
        if position is None:
            self.insert(key, value)
            return True

        node = self._nodes[position]
        order = self._compare(node.key, key)
        if order < 0:
            return False
        if order == 0 and self._prefers_existing(node.value, value):
            return False

        node.key = key
        node.value = value
        self._flow_up(position)
        return True

    # =========================================================================
    # Heap maintenance
    # =========================================================================

    @staticmethod
    def _prefers_existing(existing: CandidateRecord, candidate: CandidateRecord) -> bool:
        if existing.predecessor_id is None or candidate.predecessor_id is None:
            return False
        return existing.predecessor_id < candidate.predecessor_id

    def _less(self, i: int, j: int) -> bool:
        a, b = self._nodes[i], self._nodes[j]
        order = self._compare(a.key, b.key)
        if order != 0:
            return order < 0
        return a.object_id < b.object_id

    def _swap(self, i: int, j: int) -> None:
        if i == j:
            return
        nodes = self._nodes
        nodes[i], nodes[j] = nodes[j], nodes[i]
        nodes[i].position = i
        nodes[j].position = j
        self._positions[nodes[i].object_id] = i
        self._positions[nodes[j].object_id] = j

    def _flow_up(self, position: int) -> None:
        while position > 0:
            parent = (position - 1) // 2
            if not self._less(position, parent):
                break
            self._swap(position, parent)
            position = parent

    def _flow_down(self, position: int) -> None:
        size = len(self._nodes)
        while True:
            left = 2 * position + 1
            if left >= size:
                break
            smallest = left
            right = left + 1
            if right < size and self._less(right, left):
                smallest = right
            if not self._less(smallest, position):
                break
            self._swap(position, smallest)
            position = smallest

    def __repr__(self) -> str:
        return f"IndexedHeap(size={len(self._nodes)})"
