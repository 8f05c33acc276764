"""Append-only sync audit trail.

One SyncRecord per synchronization attempt.  Records are never edited or
removed; queries return copies sorted newest first.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from src.telemetry.base import SyncRecord, SyncStatus, utc_now

logger = logging.getLogger("mendwell.telemetry.sync.ledger")


class SyncLedger:
    """Sync history for a single patient.

    Not thread-safe on its own; the owning PatientPartition serializes
    writers.
    """

    def __init__(self, patient_id: str) -> None:
        self.patient_id = patient_id
        self._records: list[SyncRecord] = []

    def record(
        self,
        device_id: str,
        status: SyncStatus,
        point_count: int = 0,
        conflicts_resolved: int = 0,
        duplicates_removed: int = 0,
        error_message: str | None = None,
        timestamp: datetime | None = None,
        sync_id: str | None = None,
    ) -> SyncRecord:
        """Append a record and return it."""
        record = SyncRecord(
            sync_id=sync_id or f"sync-{uuid.uuid4().hex[:12]}",
            device_id=device_id,
            patient_id=self.patient_id,
            timestamp=timestamp or utc_now(),
            status=SyncStatus(status),
            point_count=point_count,
            conflicts_resolved=conflicts_resolved,
            duplicates_removed=duplicates_removed,
            error_message=error_message,
        )
        self._records.append(record)
        logger.debug(
            "Sync %s for %s/%s: %s (%d points)",
            record.sync_id, self.patient_id, device_id, record.status.value, point_count,
        )
        return record

    def history(self, limit: int | None = None) -> list[SyncRecord]:
        """Return records newest first, optionally truncated to ``limit``."""
        # Later appends win timestamp ties.
        ordered = sorted(reversed(self._records), key=lambda r: r.timestamp, reverse=True)
        return ordered[:limit] if limit else ordered

    def last_synced_per_device(self) -> dict[str, datetime]:
        """Return the latest ``synced`` timestamp for each device."""
        latest: dict[str, datetime] = {}
        for record in self._records:
            if record.status is not SyncStatus.SYNCED:
                continue
            seen = latest.get(record.device_id)
            if seen is None or record.timestamp > seen:
                latest[record.device_id] = record.timestamp
        return latest

    def __len__(self) -> int:
        return len(self._records)
