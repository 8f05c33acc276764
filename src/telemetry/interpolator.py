"""Gap interpolation for per-metric series.

Fills short gaps between consecutive points with linearly interpolated
points.  Only gaps strictly longer than ``fill_min_ratio`` intervals and at
most ``fill_max_ratio`` intervals are filled; longer outages are left alone
so the quality reporter can surface them as missing data.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Iterable

from src.telemetry.base import (
    NormalizedPoint,
    Provenance,
    quality_level_from_score,
)
from src.telemetry.config_loader import InterpolationPolicy

logger = logging.getLogger("mendwell.telemetry.interpolator")


def _linear(x0: float, y0: float, x1: float, y1: float, x: float) -> float:
    if x1 == x0:
        return y0
    return y0 + (y1 - y0) * (x - x0) / (x1 - x0)


def _gap_minutes(a: datetime, b: datetime) -> float:
    return (b - a).total_seconds() / 60.0


def is_fillable(gap_minutes: float, interval_minutes: float, policy: InterpolationPolicy) -> bool:
    """Return True if a gap is short enough to interpolate and long enough to need it."""
    return (
        policy.fill_min_ratio * interval_minutes
        < gap_minutes
        <= policy.fill_max_ratio * interval_minutes
    )


def interpolate(
    series: Iterable[NormalizedPoint],
    metric: str,
    nominal_interval_minutes: float,
    policy: InterpolationPolicy,
) -> list[NormalizedPoint]:
    """Synthesize points for the fillable gaps in one metric's series.

    Args:
        series: Normalized points for one patient.  Points of other metrics
            are ignored; the rest are sorted by timestamp.
        metric: Metric to fill.
        nominal_interval_minutes: Expected cadence used to size gaps.
        policy: Interpolation policy (ratios and assigned quality score).

    Returns:
        New interpolated points only; the input is not modified.
    """
    if nominal_interval_minutes <= 0:
        raise ValueError("nominal_interval_minutes must be positive")

    points = sorted((p for p in series if p.metric == metric), key=lambda p: p.timestamp)
    if len(points) < 2:
        return []

    score = policy.interpolated_score
    level = quality_level_from_score(score)
    filled: list[NormalizedPoint] = []

    for current, nxt in zip(points, points[1:]):
        gap = _gap_minutes(current.timestamp, nxt.timestamp)
        if not is_fillable(gap, nominal_interval_minutes, policy):
            continue

        missing = math.floor(gap / nominal_interval_minutes) - 1
        for j in range(1, missing + 1):
            offset = gap * j / (missing + 1)
            value = _linear(0.0, current.value, gap, nxt.value, offset)
            filled.append(
                NormalizedPoint(
                    point_id=f"interp-{current.point_id}-{j}",
                    source_reading_id=current.source_reading_id,
                    device_id=current.device_id,
                    patient_id=current.patient_id,
                    timestamp=current.timestamp + timedelta(minutes=offset),
                    metric=metric,
                    value=round(value, 1),
                    unit=current.unit,
                    quality_score=score,
                    quality_level=level,
                    is_interpolated=True,
                    is_outlier=False,
                    provenance=Provenance.INTERPOLATED,
                )
            )

    if filled:
        logger.debug(
            "Interpolated %d point(s) for %s (interval=%.0f min)",
            len(filled), metric, nominal_interval_minutes,
        )
    return filled
