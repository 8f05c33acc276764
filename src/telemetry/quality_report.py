"""Data quality reporting over a patient's normalized store.

Read-only: works on a snapshot of the store, so a report never blocks (or
is torn by) a concurrent ingestion.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from src.telemetry.base import (
    DataQualityReport,
    GapInterval,
    NormalizedPoint,
    quality_level_from_score,
    to_utc,
    utc_now,
)
from src.telemetry.config_loader import IngestionConfig, ReportingPolicy
from src.telemetry.devices import DeviceRegistry
from src.telemetry.store import PatientRegistry, filter_points

logger = logging.getLogger("mendwell.telemetry.quality_report")


def detect_gaps(
    points: list[NormalizedPoint],
    metric: str,
    threshold_minutes: float,
) -> list[GapInterval]:
    """Return every gap longer than ``threshold_minutes`` in ``metric``'s series."""
    series = sorted((p.timestamp for p in points if p.metric == metric))
    gaps: list[GapInterval] = []
    for start, end in zip(series, series[1:]):
        minutes = (end - start).total_seconds() / 60.0
        if minutes > threshold_minutes:
            gaps.append(GapInterval(start=start, end=end, duration_minutes=round(minutes)))
    return gaps


class DataQualityReporter:
    """Builds DataQualityReport objects for a time window.

    Usage::

        reporter = DataQualityReporter(config, registry, devices)
        report = reporter.report("patient-001")          # last 30 days
        report.overall_quality                            # QualityLevel.EXCELLENT
    """

    def __init__(
        self,
        config: IngestionConfig,
        registry: PatientRegistry,
        devices: DeviceRegistry,
    ) -> None:
        self._policy: ReportingPolicy = config.reporting
        self._registry = registry
        self._devices = devices

    def report(
        self,
        patient_id: str,
        period_start: datetime | str | None = None,
        period_end: datetime | str | None = None,
    ) -> DataQualityReport:
        """Summarize coverage and quality for ``patient_id``.

        Args:
            patient_id:   Patient to report on.
            period_start: Inclusive window start; defaults to
                          ``period_end - default_period_days``.
            period_end:   Inclusive window end; defaults to now (UTC).

        Returns:
            DataQualityReport.  An unknown patient or an empty window yields
            a zeroed report with overall quality ``invalid``.
        """
        end = to_utc(period_end) if period_end is not None else utc_now()
        start = (
            to_utc(period_start)
            if period_start is not None
            else end - timedelta(days=self._policy.default_period_days)
        )
        devices = self._devices.get_devices(patient_id)
        report = DataQualityReport(
            patient_id=patient_id,
            period_start=start,
            period_end=end,
            device_id=devices[0].device_id if devices else "",
        )

        partition = self._registry.get(patient_id)
        if partition is None:
            return report

        points = filter_points(partition.snapshot(), start_time=start, end_time=end)
        if not points:
            return report

        report.total_points = len(points)
        report.valid_points = sum(1 for p in points if p.quality_score > 0)
        report.interpolated_points = sum(1 for p in points if p.is_interpolated)
        report.outlier_points = sum(1 for p in points if p.is_outlier)

        average = sum(p.quality_score for p in points) / len(points)
        report.average_quality_score = round(average, 2)
        report.overall_quality = quality_level_from_score(report.average_quality_score)

        report.gap_intervals = detect_gaps(
            points, self._policy.gap_detection_metric, self._policy.gap_threshold_minutes
        )
        report.missing_intervals = len(report.gap_intervals)

        logger.debug(
            "Quality report for %s: %d points, avg %.2f, %d gap(s)",
            patient_id, report.total_points, report.average_quality_score,
            report.missing_intervals,
        )
        return report
