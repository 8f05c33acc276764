"""Reading validation and normalization.

Turns a RawReading into a quality-scored NormalizedPoint using the metric
range table.  Pure functions: no I/O, no store access.  Persisting the
result is the ingestion pipeline's job.

Scoring:
    unknown metric / non-finite value / bad timestamp   → rejected, score 0
    outside [hard_min, hard_max]                        → rejected, score 0
    outside [outlier_min, outlier_max], inside hard     → accepted, outlier score (0.4)
    otherwise                                           → accepted, 1.0
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from src.telemetry.base import (
    NormalizedPoint,
    Provenance,
    RawReading,
    in_zone,
    quality_level_from_score,
    to_utc,
)
from src.telemetry.config_loader import IngestionConfig

logger = logging.getLogger("mendwell.telemetry.validator")

REASON_UNKNOWN_METRIC = "unknown_metric"
REASON_NON_NUMERIC = "non_numeric"
REASON_OUT_OF_BOUNDS = "out_of_bounds"
REASON_BAD_TIMESTAMP = "bad_timestamp"
REASON_PATIENT_MISMATCH = "patient_mismatch"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one reading.

    Attributes:
        accepted:      False when the reading must be discarded.
        quality_score: 0.0 when rejected, else the assigned score.
        reason:        Rejection reason slug, None when accepted.
        is_outlier:    True when inside hard bounds but outside outlier bounds.
    """

    accepted: bool
    quality_score: float
    reason: str | None = None
    is_outlier: bool = False


@dataclass(frozen=True)
class Rejection:
    """A reading the pipeline refused, reported back to the caller."""

    reading_id: str
    metric: str
    reason: str


def _reject(reason: str) -> ValidationResult:
    return ValidationResult(accepted=False, quality_score=0.0, reason=reason)


def validate(raw: RawReading, config: IngestionConfig) -> ValidationResult:
    """Score a raw reading's value against the metric range table."""
    definition = config.metric(raw.metric)
    if definition is None:
        return _reject(REASON_UNKNOWN_METRIC)

    try:
        value = float(raw.value)
    except (TypeError, ValueError):
        return _reject(REASON_NON_NUMERIC)
    if not math.isfinite(value):
        return _reject(REASON_NON_NUMERIC)

    if not definition.within_hard_bounds(value):
        return _reject(REASON_OUT_OF_BOUNDS)

    if not definition.within_outlier_bounds(value):
        return ValidationResult(
            accepted=True,
            quality_score=config.quality.outlier_score,
            is_outlier=True,
        )

    return ValidationResult(accepted=True, quality_score=config.quality.valid_score)


def normalize(
    raw: RawReading,
    config: IngestionConfig,
    default_timezone: str | None = None,
) -> tuple[NormalizedPoint | None, ValidationResult]:
    """Validate ``raw`` and build its NormalizedPoint.

    Naive timestamps are read in the reading's own timezone, falling back to
    ``default_timezone`` (usually the registered device's zone), then UTC.

    Returns:
        (point, validation); point is None when the reading is rejected.
    """
    validation = validate(raw, config)
    if not validation.accepted:
        logger.debug(
            "Rejected reading %s (%s=%r): %s",
            raw.reading_id, raw.metric, raw.value, validation.reason,
        )
        return None, validation

    source_tz = raw.timezone or default_timezone
    try:
        timestamp = to_utc(raw.timestamp, source_tz)
        local = in_zone(timestamp, source_tz)
    except ValueError as exc:
        logger.debug("Rejected reading %s: %s", raw.reading_id, exc)
        validation = _reject(REASON_BAD_TIMESTAMP)
        return None, validation

    definition = config.metrics[raw.metric]
    unit = raw.unit.strip() if raw.unit else ""
    if not unit:
        unit = definition.unit
    elif unit.lower() != definition.unit.lower():
        logger.warning(
            "Reading %s reports unit %r for %s (expected %r); value kept as-is",
            raw.reading_id, unit, raw.metric, definition.unit,
        )

    point = NormalizedPoint(
        point_id=f"norm-{raw.reading_id}",
        source_reading_id=raw.reading_id,
        device_id=raw.device_id,
        patient_id=raw.patient_id,
        timestamp=timestamp,
        metric=raw.metric,
        value=float(raw.value),
        unit=unit,
        quality_score=validation.quality_score,
        quality_level=quality_level_from_score(validation.quality_score),
        is_interpolated=False,
        is_outlier=validation.is_outlier,
        provenance=Provenance.DEVICE,
        local_timestamp=local,
    )
    return point, validation
