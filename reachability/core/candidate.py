"""
Candidate records held in the OPTICS priority queue.
"""

from typing import Any, Hashable, Optional


class CandidateRecord:
    """
    "object_id is reachable from predecessor_id" at some candidate distance.

    Equality and hashing use object_id only, so a queue keyed on candidates
    holds at most one live candidate per object.
    """

    __slots__ = ("object_id", "predecessor_id")

    def __init__(self, object_id: Hashable, predecessor_id: Optional[Hashable] = None):
        self.object_id = object_id
        self.predecessor_id = predecessor_id

    def __eq__(self, other: Any) -> bool:
        if self is other:
            return True
        if not isinstance(other, CandidateRecord):
            return NotImplemented
        return self.object_id == other.object_id

    def __hash__(self) -> int:
        return hash(self.object_id)

    def __repr__(self) -> str:
        return f"{self.object_id} ({self.predecessor_id})"
