"""Shared fixtures and reading factories for telemetry engine tests."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from src.telemetry.base import (
    Device,
    DeviceType,
    NormalizedPoint,
    Provenance,
    RawReading,
    quality_level_from_score,
)
from src.telemetry.config_loader import IngestionConfig, load_ingestion_config
from src.telemetry.engine import TelemetryEngine

# Canonical test identities
TEST_PATIENT_ID = "patient-001"
TEST_DEVICE_ID = "watch-001"
TEST_START = datetime(2026, 2, 23, 8, 0, tzinfo=timezone.utc)

_reading_ids = itertools.count(1)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_reading(
    value: float,
    minutes: float = 0,
    metric: str = "heart_rate_resting",
    patient_id: str = TEST_PATIENT_ID,
    device_id: str = TEST_DEVICE_ID,
    reading_id: str | None = None,
    unit: str = "",
    timestamp: datetime | str | None = None,
    tz: str | None = None,
) -> RawReading:
    """Build a RawReading ``minutes`` after TEST_START."""
    return RawReading(
        reading_id=reading_id or f"r-{next(_reading_ids)}",
        device_id=device_id,
        patient_id=patient_id,
        timestamp=timestamp if timestamp is not None else TEST_START + timedelta(minutes=minutes),
        metric=metric,
        value=value,
        unit=unit,
        timezone=tz,
    )


def make_point(
    value: float,
    minutes: float = 0,
    metric: str = "heart_rate_resting",
    score: float = 1.0,
    point_id: str | None = None,
    device_id: str = TEST_DEVICE_ID,
    is_outlier: bool = False,
) -> NormalizedPoint:
    """Build an already-normalized point ``minutes`` after TEST_START."""
    pid = point_id or f"norm-p{next(_reading_ids)}"
    return NormalizedPoint(
        point_id=pid,
        source_reading_id=pid.removeprefix("norm-"),
        device_id=device_id,
        patient_id=TEST_PATIENT_ID,
        timestamp=TEST_START + timedelta(minutes=minutes),
        metric=metric,
        value=value,
        unit="bpm",
        quality_score=score,
        quality_level=quality_level_from_score(score),
        is_outlier=is_outlier,
        provenance=Provenance.DEVICE,
    )


# ---------------------------------------------------------------------------
# Config / engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ingestion_config() -> IngestionConfig:
    """Load the real ingestion policy for tests."""
    return load_ingestion_config()


@pytest.fixture
def engine(ingestion_config: IngestionConfig) -> TelemetryEngine:
    """A fresh engine with empty stores."""
    return TelemetryEngine(ingestion_config)


@pytest.fixture
def smartwatch() -> Device:
    return Device(
        device_id=TEST_DEVICE_ID,
        patient_id=TEST_PATIENT_ID,
        device_type=DeviceType.SMARTWATCH,
        brand="garmin",
        model="Venu 3",
        firmware_version="12.4",
        sampling_interval_minutes=15.0,
        battery_level=82,
        calibration_date=TEST_START - timedelta(days=60),
        calibration_due_date=TEST_START + timedelta(days=30),
        timezone="America/New_York",
    )


@pytest.fixture
def registered_engine(engine: TelemetryEngine, smartwatch: Device) -> TelemetryEngine:
    """An engine with TEST_DEVICE_ID registered for TEST_PATIENT_ID."""
    engine.register_device(smartwatch)
    return engine
