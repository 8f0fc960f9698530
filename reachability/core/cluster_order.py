"""
Cluster Order - the result of an OPTICS run.

An append-only sequence of (object_id, predecessor_id, reachability) entries.
Insertion order is the algorithm's output; entries are never reordered,
removed or mutated once written.
"""

from typing import Any, Dict, Hashable, Iterator, List, NamedTuple, Optional, Tuple

import numpy as np

from reachability.utils.error_handling import DuplicateCommitError


class ClusterOrderEntry(NamedTuple):
    """One committed object of the cluster order."""

    object_id: Hashable
    predecessor_id: Optional[Hashable]
    reachability: Any

    @property
    def starts_run(self) -> bool:
        """True if this entry opens a new density-connected run."""
        return self.predecessor_id is None


class ClusterOrder:
    """
    Ordered, write-once result of an OPTICS run.

    A run that aborts leaves the order partially populated; the engine then
    calls invalidate() and consumers must check `valid` before using it.
    """

    def __init__(self):
        self._entries: List[ClusterOrderEntry] = []
        self._index: Dict[Hashable, int] = {}
        self.valid = True
        self.complete = False
        self.invalid_reason: Optional[str] = None

    def append(
        self,
        object_id: Hashable,
        predecessor_id: Optional[Hashable],
        reachability: Any,
    ) -> ClusterOrderEntry:
        """
        Commit an object to the order.

        Raises:
            DuplicateCommitError: If object_id was already committed
        """
        if object_id in self._index:
            raise DuplicateCommitError(
                f"Object {object_id!r} committed twice",
                details={"object_id": repr(object_id), "position": self._index[object_id]},
            )

        entry = ClusterOrderEntry(object_id, predecessor_id, reachability)
        self._index[object_id] = len(self._entries)
        self._entries.append(entry)
        return entry

    def invalidate(self, reason: str) -> None:
        """Mark the order as unusable (the run that produced it aborted)."""
        self.valid = False
        self.complete = False
        self.invalid_reason = reason

    def mark_complete(self) -> None:
        self.complete = True

    # =========================================================================
    # Read-only access
    # =========================================================================

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ClusterOrderEntry]:
        return iter(self._entries)

    def __getitem__(self, position: int) -> ClusterOrderEntry:
        return self._entries[position]

    def __contains__(self, object_id: Hashable) -> bool:
        return object_id in self._index

    def entry_for(self, object_id: Hashable) -> Optional[ClusterOrderEntry]:
        position = self._index.get(object_id)
        if position is None:
            return None
        return self._entries[position]

    def position_of(self, object_id: Hashable) -> Optional[int]:
        return self._index.get(object_id)

    @property
    def object_ids(self) -> List[Hashable]:
        return [entry.object_id for entry in self._entries]

    def run_starts(self) -> List[int]:
        """Positions of entries that start a new run (predecessor is None)."""
        return [i for i, entry in enumerate(self._entries) if entry.starts_run]

    def reachability_array(self) -> np.ndarray:
        """
        Reachability distances in output order as a float array.

        Infinite reachabilities stay np.inf, which is what a reachability
        plot expects for run starts and noise.
        """
        return np.array([float(entry.reachability) for entry in self._entries], dtype=np.float64)

    def to_records(self) -> List[Tuple[Hashable, Optional[Hashable], Any]]:
        """(object_id, predecessor_id, reachability) tuples in output order."""
        return [tuple(entry) for entry in self._entries]

    def __repr__(self) -> str:
        return (
            f"ClusterOrder(size={len(self._entries)}, "
            f"runs={len(self.run_starts())}, valid={self.valid})"
        )
