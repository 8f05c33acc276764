"""Pydantic models for telemetry ingestion, devices, sync and quality reports."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from src.models.base import MendwellBase
from src.telemetry.base import (
    ConnectionStatus,
    Device,
    DeviceType,
    OfflineQueueEntry,
    Provenance,
    QualityLevel,
    RawReading,
    SyncStatus,
)


# ---------- Readings ----------

class RawReadingIn(MendwellBase):
    reading_id: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    patient_id: str = Field(min_length=1)
    timestamp: datetime | str
    metric: str
    # Non-numeric values reach the validator, which rejects only that reading.
    value: float | str | None = None
    unit: str = ""
    timezone: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_raw(self) -> RawReading:
        return RawReading(
            reading_id=self.reading_id,
            device_id=self.device_id,
            patient_id=self.patient_id,
            timestamp=self.timestamp,
            metric=self.metric,
            value=self.value,
            unit=self.unit,
            timezone=self.timezone,
            metadata=dict(self.metadata),
        )


class BatchIn(MendwellBase):
    readings: list[RawReadingIn]
    interpolate: bool | None = None


class NormalizedPointRead(MendwellBase):
    point_id: str
    source_reading_id: str
    device_id: str
    patient_id: str
    timestamp: datetime
    local_timestamp: datetime | None = None
    metric: str
    value: float
    unit: str
    quality_score: float
    quality_level: QualityLevel
    is_interpolated: bool
    is_outlier: bool
    provenance: Provenance


class RejectionRead(MendwellBase):
    reading_id: str
    metric: str
    reason: str


class BatchResultRead(MendwellBase):
    accepted: int
    rejected: int
    duplicates_removed: int
    conflicts_resolved: int
    interpolated: int
    rejections: list[RejectionRead] = Field(default_factory=list)


class IngestOneRead(MendwellBase):
    accepted: bool
    point: NormalizedPointRead | None = None


class InterpolateIn(MendwellBase):
    metrics: list[str] | None = None


class InterpolateRead(MendwellBase):
    interpolated: int


# ---------- Devices ----------

class DeviceCreate(MendwellBase):
    device_id: str = Field(min_length=1)
    patient_id: str = Field(min_length=1)
    device_type: DeviceType
    brand: str = ""
    model: str = ""
    firmware_version: str = ""
    sampling_interval_minutes: float = Field(default=15.0, gt=0)
    connection_status: ConnectionStatus = ConnectionStatus.CONNECTED
    battery_level: int = Field(default=100, ge=0, le=100)
    calibration_date: datetime | None = None
    calibration_due_date: datetime | None = None
    timezone: str = "UTC"

    def to_device(self) -> Device:
        return Device(**self.model_dump())


class DeviceUpdate(MendwellBase):
    connection_status: ConnectionStatus | None = None
    battery_level: int | None = Field(default=None, ge=0, le=100)


class DeviceRead(DeviceCreate):
    registered_at: datetime


class DeviceStatusRead(MendwellBase):
    device_id: str
    battery_level: int
    connection_status: ConnectionStatus
    is_calibrated: bool
    calibration_due: bool
    last_sync: datetime | None = None


# ---------- Offline queue & sync ----------

class OfflineQueueIn(MendwellBase):
    device_id: str = Field(min_length=1)
    readings: list[RawReadingIn]
    max_retries: int | None = Field(default=None, ge=1)


class OfflineQueueEntryRead(MendwellBase):
    entry_id: str
    device_id: str
    patient_id: str
    queued_at: datetime
    reading_count: int
    retry_count: int
    max_retries: int
    last_error: str | None = None

    @classmethod
    def from_entry(cls, entry: OfflineQueueEntry) -> "OfflineQueueEntryRead":
        return cls(
            entry_id=entry.entry_id,
            device_id=entry.device_id,
            patient_id=entry.patient_id,
            queued_at=entry.queued_at,
            reading_count=len(entry.readings),
            retry_count=entry.retry_count,
            max_retries=entry.max_retries,
            last_error=entry.last_error,
        )


class OfflineQueueRead(MendwellBase):
    size: int
    entries: list[OfflineQueueEntryRead] = Field(default_factory=list)
    failed: list[OfflineQueueEntryRead] = Field(default_factory=list)


class ReplayResultRead(MendwellBase):
    processed: int
    failed: int
    remaining: int


class SyncRecordRead(MendwellBase):
    sync_id: str
    device_id: str
    patient_id: str
    timestamp: datetime
    status: SyncStatus
    point_count: int
    conflicts_resolved: int
    duplicates_removed: int
    error_message: str | None = None


# ---------- Quality ----------

class GapIntervalRead(MendwellBase):
    start: datetime
    end: datetime
    duration_minutes: int


class DataQualityReportRead(MendwellBase):
    patient_id: str
    device_id: str
    period_start: datetime
    period_end: datetime
    total_points: int
    valid_points: int
    interpolated_points: int
    outlier_points: int
    missing_intervals: int
    average_quality_score: float
    overall_quality: QualityLevel
    gap_intervals: list[GapIntervalRead] = Field(default_factory=list)
