"""
data_models.py

Pydantic data models for the OPTICS reachability service.
Defines the serialized form of cluster orders and run summaries.

Schema Design:
- Records: one (object_id, predecessor_id, reachability) row per committed
  object, in output order; infinite reachability is written as the JSON
  constant Infinity
- Summaries: run parameters and counts reported by the CLI
"""

from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from reachability.core.cluster_order import ClusterOrderEntry


ObjectId = Union[int, str]


# =============================================================================
# CLUSTER ORDER MODELS
# =============================================================================


class ClusterOrderRecord(BaseModel):
    """Serialized cluster order entry."""

    model_config = ConfigDict(ser_json_inf_nan="constants")

    object_id: ObjectId = Field(..., description="Committed object")
    predecessor_id: Optional[ObjectId] = Field(None, description="Object it was reached from; null starts a run")
    reachability: float = Field(..., ge=0.0, description="Reachability distance (Infinity for run starts)")

    @classmethod
    def from_entry(cls, entry: ClusterOrderEntry) -> "ClusterOrderRecord":
        return cls(
            object_id=entry.object_id,
            predecessor_id=entry.predecessor_id,
            reachability=float(entry.reachability),
        )

    def as_tuple(self) -> tuple:
        return (self.object_id, self.predecessor_id, self.reachability)


class OrderingSummary(BaseModel):
    """Summary of a finished ordering run."""

    model_config = ConfigDict(ser_json_inf_nan="constants")

    run_id: str
    algorithm: str = "OPTICS"
    epsilon: float
    min_pts: int
    metric: str
    neighborhood: str
    total_objects: int = Field(..., ge=0)
    runs: int = Field(..., ge=0, description="Number of density-connected runs (entries without predecessor)")
    max_finite_reachability: Optional[float] = Field(None, description="Largest finite reachability, if any")
    processing_time_ms: float = Field(..., ge=0.0)
    created_at: str
    output_path: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict, description="Engine attribute settings")
