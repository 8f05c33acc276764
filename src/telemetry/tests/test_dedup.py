"""Tests for deduplication: best-quality-wins merge and the store key invariant."""

from __future__ import annotations

import pytest

from src.telemetry.sync.dedup import (
    StoreInvariantViolation,
    assert_unique_keys,
    merge,
    merge_with_stats,
    point_key,
)
from src.telemetry.tests.conftest import TEST_PATIENT_ID, TEST_START, make_point


class TestPointKey:
    def test_key_ignores_device(self) -> None:
        a = make_point(70, 0, device_id="watch-1")
        b = make_point(71, 0, device_id="ring-1")
        assert point_key(a) == point_key(b) == (TEST_PATIENT_ID, "heart_rate_resting", TEST_START)

    def test_key_distinguishes_metric(self) -> None:
        assert point_key(make_point(70, 0)) != point_key(make_point(97, 0, metric="blood_oxygen"))


class TestMerge:
    def test_higher_quality_wins_incoming(self) -> None:
        poor = make_point(130, 0, score=0.4, is_outlier=True)
        good = make_point(72, 0, score=1.0)
        assert merge([poor], [good]) == [good]

    def test_higher_quality_wins_existing(self) -> None:
        poor = make_point(130, 0, score=0.4, is_outlier=True)
        good = make_point(72, 0, score=1.0)
        assert merge([good], [poor]) == [good]

    def test_tie_keeps_existing(self) -> None:
        first = make_point(72, 0, point_id="norm-first")
        second = make_point(74, 0, point_id="norm-second")
        assert merge([first], [second])[0].point_id == "norm-first"

    def test_tie_within_incoming_keeps_earlier(self) -> None:
        first = make_point(72, 0, point_id="norm-first")
        second = make_point(74, 0, point_id="norm-second")
        assert merge([], [first, second])[0].point_id == "norm-first"

    def test_result_sorted_by_timestamp_then_metric(self) -> None:
        points = [
            make_point(80, 60),
            make_point(97, 0, metric="blood_oxygen"),
            make_point(70, 0),
        ]
        merged = merge([], points)
        assert [(p.timestamp, p.metric) for p in merged] == sorted(
            (p.timestamp, p.metric) for p in points
        )

    def test_idempotent(self) -> None:
        a = [make_point(70, 0), make_point(75, 240)]
        b = [make_point(72, 0, score=0.4), make_point(80, 480)]
        once = merge(a, b)
        assert merge(once, b) == once

    def test_inputs_not_modified(self) -> None:
        existing = [make_point(70, 0)]
        incoming = [make_point(72, 0, score=0.4)]
        merge(existing, incoming)
        assert len(existing) == 1 and len(incoming) == 1

    def test_stats_count_duplicates_and_conflicts(self) -> None:
        existing = [make_point(70, 0), make_point(75, 240)]
        incoming = [
            make_point(70, 0),               # duplicate, same value
            make_point(78, 240, score=0.4),  # duplicate, conflicting value
            make_point(80, 480),             # new
        ]
        result = merge_with_stats(existing, incoming)
        assert len(result.points) == 3
        assert result.duplicates_removed == 2
        assert result.conflicts_resolved == 1


class TestAssertUniqueKeys:
    def test_unique_points_pass(self) -> None:
        assert_unique_keys([make_point(70, 0), make_point(72, 240)])

    def test_duplicate_key_raises(self) -> None:
        with pytest.raises(StoreInvariantViolation, match="heart_rate_resting"):
            assert_unique_keys([make_point(70, 0), make_point(72, 0)])
