"""Tests for the data quality reporter."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.telemetry.base import QualityLevel, utc_now
from src.telemetry.engine import TelemetryEngine
from src.telemetry.quality_report import detect_gaps
from src.telemetry.tests.conftest import TEST_PATIENT_ID, TEST_START, make_point, make_reading

WINDOW_START = TEST_START - timedelta(hours=1)
WINDOW_END = TEST_START + timedelta(days=2)


class TestDetectGaps:
    def test_only_gaps_over_threshold(self) -> None:
        points = [make_point(60, 0), make_point(61, 480), make_point(62, 1000)]
        gaps = detect_gaps(points, "heart_rate_resting", 480)
        assert len(gaps) == 1
        assert gaps[0].start == TEST_START + timedelta(minutes=480)
        assert gaps[0].end == TEST_START + timedelta(minutes=1000)
        assert gaps[0].duration_minutes == 520

    def test_other_metrics_ignored(self) -> None:
        points = [make_point(97, 0, metric="blood_oxygen"), make_point(96, 2000, metric="blood_oxygen")]
        assert detect_gaps(points, "heart_rate_resting", 480) == []


class TestDataQualityReport:
    def test_counts_and_gaps(self, engine: TelemetryEngine) -> None:
        engine.ingest_batch(
            TEST_PATIENT_ID,
            [
                make_reading(60, 0),
                make_reading(130, 60),
                make_reading(64, 120),
                make_reading(66, 1000),
            ],
        )
        report = engine.get_data_quality_report(TEST_PATIENT_ID, WINDOW_START, WINDOW_END)

        assert report.total_points == 4
        assert report.valid_points == 4
        assert report.outlier_points == 1
        assert report.interpolated_points == 0
        assert report.average_quality_score == pytest.approx(0.85)
        assert report.overall_quality is QualityLevel.GOOD
        assert report.missing_intervals == 1
        gap = report.gap_intervals[0]
        assert gap.start == TEST_START + timedelta(minutes=120)
        assert gap.duration_minutes == 880

    def test_interpolated_points_counted(self, engine: TelemetryEngine) -> None:
        engine.ingest_batch(TEST_PATIENT_ID, [make_reading(70, 0), make_reading(90, 480)])
        report = engine.get_data_quality_report(TEST_PATIENT_ID, WINDOW_START, WINDOW_END)
        assert report.total_points == 3
        assert report.interpolated_points == 1
        assert report.average_quality_score == pytest.approx(0.87)
        assert report.missing_intervals == 0

    def test_window_excludes_points(self, engine: TelemetryEngine) -> None:
        engine.ingest_batch(TEST_PATIENT_ID, [make_reading(60, 0), make_reading(61, 60)])
        report = engine.get_data_quality_report(
            TEST_PATIENT_ID,
            TEST_START + timedelta(minutes=30),
            TEST_START + timedelta(minutes=90),
        )
        assert report.total_points == 1

    def test_string_bounds_accepted(self, engine: TelemetryEngine) -> None:
        engine.ingest_batch(TEST_PATIENT_ID, [make_reading(60, 0)])
        report = engine.get_data_quality_report(
            TEST_PATIENT_ID, "2026-02-23T00:00:00Z", "2026-02-24T00:00:00Z"
        )
        assert report.total_points == 1

    def test_default_window_is_last_thirty_days(self, engine: TelemetryEngine) -> None:
        recent = utc_now() - timedelta(hours=2)
        old = utc_now() - timedelta(days=45)
        engine.ingest_batch(
            TEST_PATIENT_ID,
            [make_reading(60, timestamp=recent), make_reading(61, timestamp=old)],
        )
        report = engine.get_data_quality_report(TEST_PATIENT_ID)
        assert report.total_points == 1
        assert report.period_end - report.period_start == timedelta(days=30)

    def test_unknown_patient_zeroed(self, engine: TelemetryEngine) -> None:
        report = engine.get_data_quality_report("nobody")
        assert report.total_points == 0
        assert report.average_quality_score == 0.0
        assert report.overall_quality is QualityLevel.INVALID
        assert report.gap_intervals == []
        assert report.device_id == ""

    def test_primary_device_reported(self, registered_engine: TelemetryEngine) -> None:
        report = registered_engine.get_data_quality_report(TEST_PATIENT_ID)
        assert report.device_id == "watch-001"
        assert report.total_points == 0
