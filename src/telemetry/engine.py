"""TelemetryEngine: the single entry point for ingestion, sync and reporting.

Wires the policy, the per-patient store, the device registry, the
ingestion pipeline, the offline queue and the quality reporter together,
and exposes the operations the HTTP layer (or an embedding service) calls.

Usage::

    from src.telemetry.engine import TelemetryEngine

    engine = TelemetryEngine()
    engine.register_device(Device("watch-1", "patient-001", DeviceType.SMARTWATCH))
    result = engine.ingest_batch("patient-001", readings)
    engine.get_data("patient-001", metric="heart_rate_resting")
    engine.get_data_quality_report("patient-001")
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from src.telemetry.base import (
    ConnectionStatus,
    DataQualityReport,
    Device,
    DeviceType,
    NormalizedPoint,
    OfflineQueueEntry,
    QualityLevel,
    RawReading,
    SyncRecord,
    SyncStatus,
    to_utc,
)
from src.telemetry.config_loader import IngestionConfig, get_ingestion_config
from src.telemetry.devices import DeviceRegistry, DeviceStatus
from src.telemetry.pipeline import BatchResult, IngestionPipeline
from src.telemetry.quality_report import DataQualityReporter
from src.telemetry.store import PatientRegistry, filter_points
from src.telemetry.sync.offline_queue import OfflineQueueManager, ReplayResult

logger = logging.getLogger("mendwell.telemetry.engine")


@dataclass
class DatasetStatistics:
    """Engine-wide totals across every patient."""

    total_patients: int = 0
    total_devices: int = 0
    total_raw_readings: int = 0
    total_normalized_points: int = 0
    total_sync_records: int = 0
    device_type_distribution: dict[str, int] = field(default_factory=dict)
    quality_distribution: dict[str, int] = field(default_factory=dict)
    average_points_per_patient: int = 0
    average_devices_per_patient: float = 0.0


def _as_utc(value: datetime | str | None) -> datetime | None:
    return to_utc(value) if value is not None else None


class TelemetryEngine:
    """Facade over the ingestion core.

    Args:
        config: Ingestion policy.  Defaults to the global singleton loaded
                from ingestion_config.yaml.
    """

    def __init__(self, config: IngestionConfig | None = None) -> None:
        self.config = config or get_ingestion_config()
        self.registry = PatientRegistry()
        self.devices = DeviceRegistry()
        self.pipeline = IngestionPipeline(self.config, self.registry, self.devices)
        self.offline = OfflineQueueManager(self.config, self.registry, self.pipeline)
        self.reporter = DataQualityReporter(self.config, self.registry, self.devices)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def register_device(self, device: Device) -> Device:
        return self.devices.register_device(device)

    def get_devices(self, patient_id: str) -> list[Device]:
        return self.devices.get_devices(patient_id)

    def get_device(self, device_id: str) -> Device | None:
        return self.devices.get_device(device_id)

    def get_devices_by_type(self, patient_id: str, device_type: DeviceType) -> list[Device]:
        return self.devices.get_devices_by_type(patient_id, DeviceType(device_type))

    def update_device(
        self,
        device_id: str,
        connection_status: ConnectionStatus | None = None,
        battery_level: int | None = None,
    ) -> Device:
        """Update connectivity and/or battery.  Raises UnknownDeviceError."""
        return self.devices.update_device(device_id, connection_status, battery_level)

    def get_device_status(self, device_id: str) -> DeviceStatus | None:
        device = self.devices.get_device(device_id)
        if device is None:
            return None
        last_sync = self.get_last_sync_per_device(device.patient_id).get(device_id)
        return self.devices.status(device_id, last_sync=last_sync)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_batch(
        self,
        patient_id: str,
        readings: Iterable[RawReading],
        interpolate: bool | None = None,
    ) -> BatchResult:
        return self.pipeline.ingest_batch(patient_id, readings, interpolate=interpolate)

    def ingest_one(self, raw: RawReading) -> NormalizedPoint | None:
        return self.pipeline.ingest_one(raw)

    def run_interpolation(self, patient_id: str, metrics: Iterable[str] | None = None) -> int:
        return self.pipeline.run_interpolation(patient_id, metrics)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get_data(
        self,
        patient_id: str,
        metric: str | None = None,
        device_id: str | None = None,
        start_time: datetime | str | None = None,
        end_time: datetime | str | None = None,
        include_outliers: bool = True,
        include_interpolated: bool = True,
    ) -> list[NormalizedPoint]:
        """Return a patient's points matching the filters, ascending by time.

        ``start_time`` and ``end_time`` are inclusive; naive values are UTC.
        """
        partition = self.registry.get(patient_id)
        if partition is None:
            return []
        return filter_points(
            partition.snapshot(),
            metric=metric,
            device_id=device_id,
            start_time=_as_utc(start_time),
            end_time=_as_utc(end_time),
            include_outliers=include_outliers,
            include_interpolated=include_interpolated,
        )

    def get_latest_metrics(self, patient_id: str) -> dict[str, NormalizedPoint]:
        """Return the most recent point of each metric."""
        latest: dict[str, NormalizedPoint] = {}
        for point in self.get_data(patient_id):
            latest[point.metric] = point
        return latest

    def get_metric_time_series(
        self,
        patient_id: str,
        metric: str,
        start_time: datetime | str | None = None,
        end_time: datetime | str | None = None,
    ) -> list[tuple[datetime, float]]:
        """Return ``(timestamp, value)`` pairs for one metric, outliers excluded."""
        points = self.get_data(
            patient_id,
            metric=metric,
            start_time=start_time,
            end_time=end_time,
            include_outliers=False,
        )
        return [(p.timestamp, p.value) for p in points]

    def get_patient_ids(self) -> list[str]:
        """Return every patient with stored data or a registered device."""
        ids = set(self.registry.patient_ids())
        ids.update(d.patient_id for d in self.devices.all_devices())
        return sorted(ids)

    # ------------------------------------------------------------------
    # Offline queue and sync history
    # ------------------------------------------------------------------

    def queue_offline_data(
        self,
        device_id: str,
        patient_id: str,
        readings: Iterable[RawReading],
        max_retries: int | None = None,
    ) -> OfflineQueueEntry:
        return self.offline.queue_offline_data(device_id, patient_id, readings, max_retries)

    def process_offline_queue(self, patient_id: str) -> ReplayResult:
        return self.offline.process_offline_queue(patient_id)

    def get_offline_queue_size(self, patient_id: str) -> int:
        return self.offline.get_offline_queue_size(patient_id)

    def get_offline_queue(self, patient_id: str) -> list[OfflineQueueEntry]:
        return self.offline.get_offline_queue(patient_id)

    def get_failed_offline_entries(self, patient_id: str) -> list[OfflineQueueEntry]:
        return self.offline.get_failed_offline_entries(patient_id)

    def record_sync(
        self,
        patient_id: str,
        device_id: str,
        status: SyncStatus,
        point_count: int = 0,
        conflicts_resolved: int = 0,
        duplicates_removed: int = 0,
        error_message: str | None = None,
    ) -> SyncRecord:
        """Append a sync outcome reported by an outer transport."""
        partition = self.registry.get_or_create(patient_id)
        with partition.lock:
            return partition.ledger.record(
                device_id,
                SyncStatus(status),
                point_count=point_count,
                conflicts_resolved=conflicts_resolved,
                duplicates_removed=duplicates_removed,
                error_message=error_message,
            )

    def get_sync_history(self, patient_id: str, limit: int | None = None) -> list[SyncRecord]:
        partition = self.registry.get(patient_id)
        return partition.ledger.history(limit) if partition is not None else []

    def get_last_sync_per_device(self, patient_id: str) -> dict[str, datetime]:
        partition = self.registry.get(patient_id)
        return partition.ledger.last_synced_per_device() if partition is not None else {}

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_data_quality_report(
        self,
        patient_id: str,
        period_start: datetime | str | None = None,
        period_end: datetime | str | None = None,
    ) -> DataQualityReport:
        return self.reporter.report(patient_id, period_start, period_end)

    def get_dataset_statistics(self) -> DatasetStatistics:
        patient_ids = self.get_patient_ids()
        devices = self.devices.all_devices()
        stats = DatasetStatistics(
            total_patients=len(patient_ids),
            total_devices=len(devices),
            device_type_distribution=dict(Counter(d.device_type.value for d in devices)),
            quality_distribution={level.value: 0 for level in QualityLevel},
        )

        for partition in self.registry.partitions():
            points = partition.snapshot()
            stats.total_normalized_points += len(points)
            stats.total_raw_readings += len(partition.raw_archive)
            stats.total_sync_records += len(partition.ledger)
            for point in points:
                stats.quality_distribution[point.quality_level.value] += 1

        if stats.total_patients:
            stats.average_points_per_patient = round(
                stats.total_normalized_points / stats.total_patients
            )
            stats.average_devices_per_patient = round(
                stats.total_devices / stats.total_patients, 1
            )
        return stats

    def clear_all(self) -> None:
        """Drop every patient's data and every registered device."""
        self.registry.clear()
        self.devices.clear()
        logger.info("Cleared all telemetry state")
