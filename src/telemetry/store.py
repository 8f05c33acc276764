"""Per-patient normalized store.

Each patient gets one PatientPartition owning everything that patient's
writes touch: the normalized points, the raw-reading archive, the offline
queue and the sync ledger.  A partition is guarded by its own re-entrant
lock, so different patients never contend and one patient's ingestion,
offline replay and interpolation are serialized.

The point collection is an immutable tuple replaced wholesale on commit.
Readers grab the current tuple as a snapshot without taking the lock.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Iterable

from src.telemetry.base import NormalizedPoint, OfflineQueueEntry, RawReading
from src.telemetry.sync.dedup import assert_unique_keys
from src.telemetry.sync.ledger import SyncLedger

logger = logging.getLogger("mendwell.telemetry.store")


class PatientPartition:
    """All mutable telemetry state for one patient.

    Writers must hold ``lock``.  ``snapshot()`` is safe without it.
    """

    def __init__(self, patient_id: str) -> None:
        self.patient_id = patient_id
        self.lock = threading.RLock()
        self._points: tuple[NormalizedPoint, ...] = ()
        self.raw_archive: list[RawReading] = []
        self.ledger = SyncLedger(patient_id)
        self.offline_queue: list[OfflineQueueEntry] = []
        self.failed_entries: list[OfflineQueueEntry] = []

    def snapshot(self) -> tuple[NormalizedPoint, ...]:
        """Return the committed points as of now."""
        return self._points

    def commit(self, points: Iterable[NormalizedPoint]) -> None:
        """Replace the stored points.  Caller must hold ``lock``.

        Raises:
            StoreInvariantViolation: If ``points`` holds a duplicate key.
        """
        new_points = tuple(points)
        assert_unique_keys(new_points)
        self._points = new_points


class PatientRegistry:
    """Creates and hands out partitions, one per patient id."""

    def __init__(self) -> None:
        self._partitions: dict[str, PatientPartition] = {}
        self._lock = threading.Lock()

    def get(self, patient_id: str) -> PatientPartition | None:
        return self._partitions.get(patient_id)

    def get_or_create(self, patient_id: str) -> PatientPartition:
        partition = self._partitions.get(patient_id)
        if partition is None:
            with self._lock:
                partition = self._partitions.get(patient_id)
                if partition is None:
                    partition = PatientPartition(patient_id)
                    self._partitions[patient_id] = partition
                    logger.debug("Created partition for patient %s", patient_id)
        return partition

    def patient_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._partitions)

    def partitions(self) -> list[PatientPartition]:
        with self._lock:
            return list(self._partitions.values())

    def clear(self) -> None:
        with self._lock:
            self._partitions.clear()


def filter_points(
    points: Iterable[NormalizedPoint],
    metric: str | None = None,
    device_id: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    include_outliers: bool = True,
    include_interpolated: bool = True,
) -> list[NormalizedPoint]:
    """Select points matching every given filter, sorted ascending by time.

    ``start_time`` and ``end_time`` are inclusive and must be aware datetimes.
    """
    selected = []
    for p in points:
        if metric is not None and p.metric != metric:
            continue
        if device_id is not None and p.device_id != device_id:
            continue
        if start_time is not None and p.timestamp < start_time:
            continue
        if end_time is not None and p.timestamp > end_time:
            continue
        if not include_outliers and p.is_outlier:
            continue
        if not include_interpolated and p.is_interpolated:
            continue
        selected.append(p)
    selected.sort(key=lambda p: p.timestamp)
    return selected
