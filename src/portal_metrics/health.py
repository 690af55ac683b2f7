"""Source health monitoring utilities."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict


@dataclass
class FetchRecord:
    """Represents a single call to an external metric source."""

    source_id: str
    duration_ms: float
    success: bool
    timestamp: float
    error_message: str | None = None


class SourceHealthMonitor:
    """Keeps a bounded history of source calls for the health endpoint."""

    def __init__(self, max_records: int = 500) -> None:
        self._records: Deque[FetchRecord] = deque(maxlen=max_records)

    def record_fetch(
        self,
        *,
        source_id: str,
        duration_ms: float,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        self._records.append(
            FetchRecord(
                source_id=source_id,
                duration_ms=duration_ms,
                success=success,
                error_message=error_message,
                timestamp=time.time(),
            )
        )

    def summary(self) -> Dict[str, object]:
        if not self._records:
            return {
                "recent_fetches": 0,
                "avg_duration_ms": 0.0,
                "success_rate": 1.0,
                "recent_errors": [],
                "requests_by_source": {},
            }

        records = list(self._records)
        successes = sum(1 for record in records if record.success)
        errors = [
            f"{record.source_id}: {record.error_message}"
            for record in records
            if record.error_message
        ]
        by_source: Dict[str, int] = {}
        for record in records:
            by_source[record.source_id] = by_source.get(record.source_id, 0) + 1

        return {
            "recent_fetches": len(records),
            "avg_duration_ms": sum(record.duration_ms for record in records) / len(records),
            "success_rate": successes / len(records),
            "recent_errors": errors[-5:],
            "requests_by_source": by_source,
        }
