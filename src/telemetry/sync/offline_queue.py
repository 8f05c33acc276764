"""Offline buffering and replay for devices that lost connectivity.

A device that cannot deliver live hands its readings to
``queue_offline_data``, which never fails.  ``process_offline_queue``
replays every queued entry for a patient through the normal ingestion
pipeline while holding that patient's write lock, so a replay can never
interleave with live ingestion for the same patient.

Entry lifecycle::

    queued ──replay──► synced            (≥1 reading accepted; entry removed)
                 └───► failed-retry      (retry_count += 1, stays queued)
                 └───► terminal-failed   (retry_count reached max_retries;
                                          moved to the failed-entries list)

There is no timer.  Replay happens only when called, and repeated calls
are safe: a synced entry is gone and a terminal entry is never retried.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from src.telemetry.base import OfflineQueueEntry, RawReading, SyncStatus, utc_now
from src.telemetry.config_loader import IngestionConfig
from src.telemetry.pipeline import BatchResult, IngestionPipeline
from src.telemetry.store import PatientPartition, PatientRegistry

logger = logging.getLogger("mendwell.telemetry.sync.offline_queue")


@dataclass
class ReplayResult:
    """Outcome of one ``process_offline_queue`` call.

    Attributes:
        processed: Entries replayed successfully and removed.
        failed:    Entries that became (or already were) terminal this call.
        remaining: Entries still in the active queue afterwards.
    """

    processed: int = 0
    failed: int = 0
    remaining: int = 0


def _failure_message(result: BatchResult) -> str:
    if not result.rejections:
        return "Replay batch contained no readings"
    reasons = Counter(r.reason for r in result.rejections)
    detail = ", ".join(f"{reason}={count}" for reason, count in sorted(reasons.items()))
    return f"No readings accepted ({detail})"


class OfflineQueueManager:
    """Queues and replays offline batches, per patient.

    Usage::

        manager = OfflineQueueManager(config, registry, pipeline)
        manager.queue_offline_data("dev-1", "patient-001", readings)
        result = manager.process_offline_queue("patient-001")
    """

    def __init__(
        self,
        config: IngestionConfig,
        registry: PatientRegistry,
        pipeline: IngestionPipeline,
    ) -> None:
        self._config = config
        self._registry = registry
        self._pipeline = pipeline

    def queue_offline_data(
        self,
        device_id: str,
        patient_id: str,
        readings: Iterable[RawReading],
        max_retries: int | None = None,
    ) -> OfflineQueueEntry:
        """Buffer a batch for later replay and record an ``offline_queued`` sync."""
        entry = OfflineQueueEntry(
            entry_id=f"offline-{device_id}-{uuid.uuid4().hex[:12]}",
            device_id=device_id,
            patient_id=patient_id,
            queued_at=utc_now(),
            readings=list(readings),
            max_retries=max_retries if max_retries is not None else self._config.offline_queue.max_retries,
        )
        partition = self._registry.get_or_create(patient_id)
        with partition.lock:
            partition.offline_queue.append(entry)
            partition.ledger.record(
                device_id,
                SyncStatus.OFFLINE_QUEUED,
                point_count=len(entry.readings),
            )
        logger.info(
            "Queued %d offline reading(s) from %s for %s as %s",
            len(entry.readings), device_id, patient_id, entry.entry_id,
        )
        return entry

    def process_offline_queue(self, patient_id: str) -> ReplayResult:
        """Replay every queued entry for a patient.

        Returns:
            ReplayResult counting processed, failed and remaining entries.
        """
        partition = self._registry.get(patient_id)
        if partition is None:
            return ReplayResult()

        result = ReplayResult()
        with partition.lock:
            still_queued: list[OfflineQueueEntry] = []
            for entry in partition.offline_queue:
                if entry.exhausted:
                    self._retire(partition, entry)
                    result.failed += 1
                    continue

                batch = self._pipeline.ingest_batch(
                    patient_id, entry.readings, archive=entry.retry_count == 0
                )
                if batch.accepted > 0:
                    partition.ledger.record(
                        entry.device_id,
                        SyncStatus.SYNCED,
                        point_count=batch.accepted,
                        conflicts_resolved=batch.conflicts_resolved,
                        duplicates_removed=batch.duplicates_removed,
                    )
                    result.processed += 1
                    continue

                entry.retry_count += 1
                entry.last_error = _failure_message(batch)
                partition.ledger.record(
                    entry.device_id,
                    SyncStatus.FAILED,
                    error_message=entry.last_error,
                )
                if entry.exhausted:
                    self._retire(partition, entry)
                    result.failed += 1
                else:
                    logger.info(
                        "Offline entry %s failed replay (%d/%d): %s",
                        entry.entry_id, entry.retry_count, entry.max_retries, entry.last_error,
                    )
                    still_queued.append(entry)

            partition.offline_queue = still_queued
            result.remaining = len(still_queued)

        logger.info(
            "Offline replay for %s: %d processed, %d failed, %d remaining",
            patient_id, result.processed, result.failed, result.remaining,
        )
        return result

    @staticmethod
    def _retire(partition: PatientPartition, entry: OfflineQueueEntry) -> None:
        partition.failed_entries.append(entry)
        logger.warning(
            "Offline entry %s from %s gave up after %d attempt(s): %s",
            entry.entry_id, entry.device_id, entry.retry_count, entry.last_error,
        )

    def get_offline_queue_size(self, patient_id: str) -> int:
        partition = self._registry.get(patient_id)
        return len(partition.offline_queue) if partition is not None else 0

    def get_offline_queue(self, patient_id: str) -> list[OfflineQueueEntry]:
        partition = self._registry.get(patient_id)
        return list(partition.offline_queue) if partition is not None else []

    def get_failed_offline_entries(self, patient_id: str) -> list[OfflineQueueEntry]:
        """Return entries that exhausted their retries, oldest first."""
        partition = self._registry.get(patient_id)
        return list(partition.failed_entries) if partition is not None else []
