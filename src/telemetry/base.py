"""Canonical data models for the Mendwell telemetry ingestion engine.

Every stage of the pipeline (validator, interpolator, deduplicator, store,
offline queue and reporter) speaks in these types.  They are the single
source of truth shared by the engine facade and the API layer.

Timestamps on normalized records are always timezone-aware UTC.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("mendwell.telemetry")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class QualityLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    INVALID = "invalid"


class Provenance(str, Enum):
    DEVICE = "device"
    INTERPOLATED = "interpolated"
    MANUAL = "manual"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    CONFLICT = "conflict"
    FAILED = "failed"
    OFFLINE_QUEUED = "offline_queued"


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    INTERMITTENT = "intermittent"


class DeviceType(str, Enum):
    SMARTWATCH = "smartwatch"
    BLOOD_PRESSURE_MONITOR = "blood_pressure_monitor"
    PULSE_OXIMETER = "pulse_oximeter"
    SMART_SCALE = "smart_scale"
    CONTINUOUS_GLUCOSE_MONITOR = "continuous_glucose_monitor"
    SMART_THERMOMETER = "smart_thermometer"
    ACTIVITY_TRACKER = "activity_tracker"


# Minimum score for each level, checked in order.
QUALITY_THRESHOLDS: tuple[tuple[float, QualityLevel], ...] = (
    (0.9, QualityLevel.EXCELLENT),
    (0.7, QualityLevel.GOOD),
    (0.5, QualityLevel.FAIR),
)


def quality_level_from_score(score: float) -> QualityLevel:
    """Map a quality score to its level.

    The mapping is total: >=0.9 excellent, >=0.7 good, >=0.5 fair,
    >0 poor, anything else invalid.  Shared by the normalizer, the
    interpolator and the quality reporter so the thresholds cannot drift.
    """
    for minimum, level in QUALITY_THRESHOLDS:
        if score >= minimum:
            return level
    if score > 0:
        return QualityLevel.POOR
    return QualityLevel.INVALID


# ---------------------------------------------------------------------------
# Policy table entry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricDefinition:
    """Physical bounds and cadence for one measurable quantity.

    Attributes:
        metric:      Metric identifier (e.g. 'heart_rate_resting').
        hard_min:    Lowest physically plausible value (inclusive).
        hard_max:    Highest physically plausible value (inclusive).
        outlier_min: Lower edge of the expected physiological range.
        outlier_max: Upper edge of the expected physiological range.
        unit:        Canonical unit string.
        sampling_interval_minutes: Nominal cadence of the metric.
    """

    metric: str
    hard_min: float
    hard_max: float
    outlier_min: float
    outlier_max: float
    unit: str
    sampling_interval_minutes: float

    def within_hard_bounds(self, value: float) -> bool:
        return self.hard_min <= value <= self.hard_max

    def within_outlier_bounds(self, value: float) -> bool:
        return self.outlier_min <= value <= self.outlier_max


# ---------------------------------------------------------------------------
# Raw and normalized readings
# ---------------------------------------------------------------------------


@dataclass
class RawReading:
    """A single, unvalidated device observation.

    Consumed exactly once by the ingestion pipeline.  ``timestamp`` may be a
    datetime or an ISO-8601 string; a naive value is read in ``timezone``.

    Attributes:
        reading_id: Device- or generator-assigned identifier.
        device_id:  Originating device.
        patient_id: Patient the device belongs to.
        timestamp:  Observation instant.
        metric:     Metric identifier.
        value:      Numeric reading.
        unit:       Unit reported by the device (may be blank).
        timezone:   IANA name of the source clock, None to defer to the device.
        metadata:   Free-form device extras, not interpreted.
    """

    reading_id: str
    device_id: str
    patient_id: str
    timestamp: datetime | str
    metric: str
    value: float
    unit: str = ""
    timezone: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedPoint:
    """The pipeline's canonical, quality-scored record.

    Never mutated after creation; the deduplicator replaces superseded
    points wholesale.
    """

    point_id: str
    source_reading_id: str
    device_id: str
    patient_id: str
    timestamp: datetime
    metric: str
    value: float
    unit: str
    quality_score: float
    quality_level: QualityLevel
    is_interpolated: bool = False
    is_outlier: bool = False
    provenance: Provenance = Provenance.DEVICE
    local_timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# Devices and sync bookkeeping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Device:
    """A registered sensor.

    Attributes:
        device_id:   Unique device identifier.
        patient_id:  Owning patient.
        device_type: Category of sensor.
        brand:       Manufacturer slug (e.g. 'garmin', 'dexcom').
        model:       Human-readable model name.
        firmware_version: Reported firmware.
        sampling_interval_minutes: Nominal cadence.
        connection_status: Last known connectivity.
        battery_level: Percent, 0-100.
        calibration_date:     Last calibration instant.
        calibration_due_date: When recalibration is due.
        timezone:      IANA zone of the device clock.
        registered_at: UTC registration instant.
    """

    device_id: str
    patient_id: str
    device_type: DeviceType
    brand: str = ""
    model: str = ""
    firmware_version: str = ""
    sampling_interval_minutes: float = 15.0
    connection_status: ConnectionStatus = ConnectionStatus.CONNECTED
    battery_level: int = 100
    calibration_date: datetime | None = None
    calibration_due_date: datetime | None = None
    timezone: str = "UTC"
    registered_at: datetime = field(default_factory=lambda: utc_now())


@dataclass(frozen=True)
class SyncRecord:
    """Immutable audit entry of one synchronization attempt."""

    sync_id: str
    device_id: str
    patient_id: str
    timestamp: datetime
    status: SyncStatus
    point_count: int = 0
    conflicts_resolved: int = 0
    duplicates_removed: int = 0
    error_message: str | None = None


@dataclass
class OfflineQueueEntry:
    """A buffered batch of readings a device could not deliver live.

    ``retry_count`` is the only field that changes after creation.
    """

    entry_id: str
    device_id: str
    patient_id: str
    queued_at: datetime
    readings: list[RawReading]
    retry_count: int = 0
    max_retries: int = 5
    last_error: str | None = None

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.max_retries


# ---------------------------------------------------------------------------
# Derived reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GapInterval:
    start: datetime
    end: datetime
    duration_minutes: int


@dataclass
class DataQualityReport:
    """Coverage and quality summary for one patient over a window."""

    patient_id: str
    period_start: datetime
    period_end: datetime
    device_id: str = ""
    total_points: int = 0
    valid_points: int = 0
    interpolated_points: int = 0
    outlier_points: int = 0
    missing_intervals: int = 0
    average_quality_score: float = 0.0
    overall_quality: QualityLevel = QualityLevel.INVALID
    gap_intervals: list[GapInterval] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime | str, tz_name: str | None = None) -> datetime:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime.

    Aware values are converted; naive values are interpreted in ``tz_name``
    (UTC when None).

    Raises:
        ValueError: If the string is unparseable or the zone is unknown.
    """
    if isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"Unparseable timestamp: {value!r}") from exc
    elif isinstance(value, datetime):
        dt = value
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_zone(tz_name))
    return dt.astimezone(timezone.utc)


def _zone(tz_name: str | None):
    if not tz_name or tz_name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {tz_name!r}") from exc


def in_zone(dt: datetime, tz_name: str | None) -> datetime:
    """Return ``dt`` expressed in ``tz_name`` (UTC when None)."""
    return dt.astimezone(_zone(tz_name))
