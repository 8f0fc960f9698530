"""
JSONL export of cluster orders.

One file per run, one ClusterOrderRecord per line in output order, so two
runs can be compared byte for byte.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from reachability.core.cluster_order import ClusterOrder
from reachability.schemas.data_models import ClusterOrderRecord
from reachability.utils.error_handling import StorageError

logger = logging.getLogger(__name__)


class ClusterOrderStorage:
    """Writes and reads cluster orders as JSONL files."""

    def __init__(
        self,
        output_dir: Union[str, Path] = "data/cluster_orders",
        file_pattern: str = "cluster_order_{run_id}_{timestamp}.jsonl",
    ):
        """
        Initialize storage.

        Args:
            output_dir: Directory for JSONL files (created if missing)
            file_pattern: Filename pattern with {run_id} and {timestamp} fields
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.file_pattern = file_pattern

        logger.info(f"ClusterOrderStorage initialized (dir={self.output_dir})")

    def save(self, cluster_order: ClusterOrder, run_id: str, filename: Optional[str] = None) -> Path:
        """
        Write a cluster order to a new JSONL file.

        Args:
            cluster_order: Completed cluster order
            run_id: Run identifier used in the filename
            filename: Explicit filename (overrides the pattern)

        Returns:
            Path of the written file

        Raises:
            StorageError: If the order is invalid or the file cannot be written
        """
        if not cluster_order.valid:
            raise StorageError(
                "Refusing to export an invalid cluster order",
                details={"run_id": run_id, "reason": cluster_order.invalid_reason},
            )

        filepath = self.output_dir / (filename or self._get_filename(run_id))
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                for entry in cluster_order:
                    f.write(ClusterOrderRecord.from_entry(entry).model_dump_json() + "\n")
        except OSError as e:
            raise StorageError(
                f"Failed to write cluster order: {e}",
                details={"path": str(filepath)},
            ) from e

        logger.info(f"Saved cluster order with {len(cluster_order)} entries to {filepath}")
        return filepath

    def load(self, path: Union[str, Path]) -> List[ClusterOrderRecord]:
        """
        Read a cluster order file back into records.

        Raises:
            StorageError: If the file is missing or malformed
        """
        filepath = Path(path)
        records: List[ClusterOrderRecord] = []
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    records.append(ClusterOrderRecord.model_validate(json.loads(line)))
        except OSError as e:
            raise StorageError(f"Failed to read cluster order: {e}", details={"path": str(filepath)}) from e
        except (json.JSONDecodeError, ValidationError) as e:
            raise StorageError(
                f"Malformed cluster order line {line_number}: {e}",
                details={"path": str(filepath), "line": line_number},
            ) from e

        return records

    def _get_filename(self, run_id: str) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        return self.file_pattern.format(run_id=run_id, timestamp=timestamp)
