"""Mendwell Wearable Telemetry Engine.

This package ingests heterogeneous sensor readings from the devices a
post-surgical patient wears, validates and quality-scores them, fills short
gaps, deduplicates overlapping readings, and buffers data captured while a
device was offline.

Subpackages:
    sync/  — Deduplication, sync audit ledger, offline queue replay

Core modules:
    base           — Canonical data models and the quality-level mapping
    config_loader  — Load/validate/hot-reload ingestion_config.yaml
    validator      — Reading validation and normalization
    interpolator   — Linear gap filling for gap-sensitive metrics
    store          — Per-patient single-writer partitions
    devices        — Registered device bookkeeping
    pipeline       — Batch and real-time ingestion
    quality_report — Data quality reports
    engine         — TelemetryEngine facade
"""

from src.telemetry.base import (
    DataQualityReport,
    Device,
    DeviceType,
    NormalizedPoint,
    QualityLevel,
    RawReading,
    SyncStatus,
)
from src.telemetry.config_loader import IngestionConfig, get_ingestion_config
from src.telemetry.engine import TelemetryEngine

__all__ = [
    "TelemetryEngine",
    "RawReading",
    "NormalizedPoint",
    "Device",
    "DeviceType",
    "QualityLevel",
    "SyncStatus",
    "DataQualityReport",
    "IngestionConfig",
    "get_ingestion_config",
]
