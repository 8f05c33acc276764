"""Tests for offline buffering, replay, bounded retries and the sync ledger."""

from __future__ import annotations

from src.telemetry.base import SyncStatus
from src.telemetry.engine import TelemetryEngine
from src.telemetry.tests.conftest import TEST_DEVICE_ID, TEST_PATIENT_ID, make_reading


def _good_batch() -> list:
    return [make_reading(60, 0), make_reading(62, 60)]


def _bad_batch() -> list:
    return [make_reading(10, 0), make_reading(500, 60)]


class TestQueueOfflineData:
    def test_queue_appends_entry(self, engine: TelemetryEngine) -> None:
        entry = engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _good_batch())
        assert entry.entry_id.startswith(f"offline-{TEST_DEVICE_ID}-")
        assert entry.retry_count == 0
        assert entry.max_retries == 5
        assert engine.get_offline_queue_size(TEST_PATIENT_ID) == 1
        assert engine.get_offline_queue(TEST_PATIENT_ID) == [entry]

    def test_queue_does_not_ingest(self, engine: TelemetryEngine) -> None:
        engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _good_batch())
        assert engine.get_data(TEST_PATIENT_ID) == []

    def test_queue_records_offline_sync(self, engine: TelemetryEngine) -> None:
        engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _good_batch())
        [record] = engine.get_sync_history(TEST_PATIENT_ID)
        assert record.status is SyncStatus.OFFLINE_QUEUED
        assert record.point_count == 2

    def test_custom_max_retries(self, engine: TelemetryEngine) -> None:
        entry = engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, [], max_retries=2)
        assert entry.max_retries == 2

    def test_unknown_patient_queue_is_empty(self, engine: TelemetryEngine) -> None:
        assert engine.get_offline_queue_size("nobody") == 0
        assert engine.get_offline_queue("nobody") == []
        assert engine.get_failed_offline_entries("nobody") == []


class TestProcessOfflineQueue:
    def test_successful_replay(self, engine: TelemetryEngine) -> None:
        engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _good_batch())
        result = engine.process_offline_queue(TEST_PATIENT_ID)

        assert (result.processed, result.failed, result.remaining) == (1, 0, 0)
        assert engine.get_offline_queue_size(TEST_PATIENT_ID) == 0
        assert len(engine.get_data(TEST_PATIENT_ID)) == 2

        latest = engine.get_sync_history(TEST_PATIENT_ID, limit=1)[0]
        assert latest.status is SyncStatus.SYNCED
        assert latest.point_count == 2

    def test_replay_is_idempotent(self, engine: TelemetryEngine) -> None:
        engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _good_batch())
        engine.process_offline_queue(TEST_PATIENT_ID)
        stored = engine.get_data(TEST_PATIENT_ID)

        result = engine.process_offline_queue(TEST_PATIENT_ID)
        assert (result.processed, result.failed, result.remaining) == (0, 0, 0)
        assert engine.get_data(TEST_PATIENT_ID) == stored

    def test_replay_of_already_live_data_reports_duplicates(self, engine: TelemetryEngine) -> None:
        batch = _good_batch()
        engine.ingest_batch(TEST_PATIENT_ID, batch)
        engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, batch)
        engine.process_offline_queue(TEST_PATIENT_ID)

        synced = [r for r in engine.get_sync_history(TEST_PATIENT_ID) if r.status is SyncStatus.SYNCED]
        assert synced[0].duplicates_removed == 2
        assert len(engine.get_data(TEST_PATIENT_ID)) == 2

    def test_failed_replay_increments_retry(self, engine: TelemetryEngine) -> None:
        entry = engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _bad_batch())
        result = engine.process_offline_queue(TEST_PATIENT_ID)

        assert (result.processed, result.failed, result.remaining) == (0, 0, 1)
        assert entry.retry_count == 1
        assert "out_of_bounds=2" in entry.last_error

        latest = engine.get_sync_history(TEST_PATIENT_ID, limit=1)[0]
        assert latest.status is SyncStatus.FAILED
        assert latest.error_message == entry.last_error

    def test_entry_leaves_queue_after_max_retries(self, engine: TelemetryEngine) -> None:
        """An entry failing max_retries consecutive replays is never retried again."""
        entry = engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _bad_batch())

        for attempt in range(1, entry.max_retries):
            result = engine.process_offline_queue(TEST_PATIENT_ID)
            assert result.remaining == 1, attempt

        final = engine.process_offline_queue(TEST_PATIENT_ID)
        assert (final.failed, final.remaining) == (1, 0)
        assert engine.get_offline_queue_size(TEST_PATIENT_ID) == 0
        assert engine.get_failed_offline_entries(TEST_PATIENT_ID) == [entry]
        assert entry.retry_count == entry.max_retries

        after = engine.process_offline_queue(TEST_PATIENT_ID)
        assert (after.processed, after.failed, after.remaining) == (0, 0, 0)
        assert entry.retry_count == entry.max_retries

        failures = [r for r in engine.get_sync_history(TEST_PATIENT_ID) if r.status is SyncStatus.FAILED]
        assert len(failures) == entry.max_retries

    def test_mixed_entries(self, engine: TelemetryEngine) -> None:
        engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _good_batch())
        engine.queue_offline_data("oxi-001", TEST_PATIENT_ID, _bad_batch(), max_retries=1)
        engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, _bad_batch())

        result = engine.process_offline_queue(TEST_PATIENT_ID)
        assert (result.processed, result.failed, result.remaining) == (1, 1, 1)
        assert [e.device_id for e in engine.get_failed_offline_entries(TEST_PATIENT_ID)] == ["oxi-001"]

    def test_unknown_patient(self, engine: TelemetryEngine) -> None:
        result = engine.process_offline_queue("nobody")
        assert (result.processed, result.failed, result.remaining) == (0, 0, 0)

    def test_terminal_failure_visible_for_patient_without_points(
        self, engine: TelemetryEngine
    ) -> None:
        """A patient whose only readings were queued and rejected still shows the failure."""
        entry = engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, [make_reading(5, 0)])
        assert engine.get_offline_queue_size(TEST_PATIENT_ID) == 1

        for _ in range(entry.max_retries):
            engine.process_offline_queue(TEST_PATIENT_ID)

        assert engine.get_data(TEST_PATIENT_ID) == []
        assert engine.get_offline_queue_size(TEST_PATIENT_ID) == 0
        assert engine.get_failed_offline_entries(TEST_PATIENT_ID) == [entry]
        assert engine.get_sync_history(TEST_PATIENT_ID, limit=1)[0].status is SyncStatus.FAILED

    def test_failed_retries_archive_raw_readings_once(self, engine: TelemetryEngine) -> None:
        engine.queue_offline_data(
            TEST_DEVICE_ID,
            TEST_PATIENT_ID,
            _bad_batch() + [make_reading(60, 0, patient_id="patient-999")],
        )
        for _ in range(5):
            engine.process_offline_queue(TEST_PATIENT_ID)

        assert engine.get_dataset_statistics().total_raw_readings == 2

    def test_replayed_reading_replaces_interpolated_fill(self, engine: TelemetryEngine) -> None:
        """Late device data inside a filled gap removes the fill it made redundant."""
        engine.ingest_batch(TEST_PATIENT_ID, [make_reading(70, 0), make_reading(90, 500)])
        assert len(engine.get_data(TEST_PATIENT_ID, include_interpolated=False)) == 2
        assert len(engine.get_data(TEST_PATIENT_ID)) == 3

        engine.queue_offline_data(TEST_DEVICE_ID, TEST_PATIENT_ID, [make_reading(75, 240)])
        engine.process_offline_queue(TEST_PATIENT_ID)

        points = engine.get_data(TEST_PATIENT_ID, metric="heart_rate_resting")
        assert [(p.value, p.is_interpolated) for p in points] == [
            (70, False),
            (75, False),
            (90, False),
        ]


class TestSyncLedger:
    def test_history_newest_first(self, engine: TelemetryEngine) -> None:
        engine.record_sync(TEST_PATIENT_ID, TEST_DEVICE_ID, SyncStatus.PENDING)
        engine.record_sync(TEST_PATIENT_ID, TEST_DEVICE_ID, SyncStatus.SYNCED, point_count=4)
        history = engine.get_sync_history(TEST_PATIENT_ID)
        assert [r.status for r in history] == [SyncStatus.SYNCED, SyncStatus.PENDING]
        assert history[0].timestamp >= history[1].timestamp

    def test_history_limit(self, engine: TelemetryEngine) -> None:
        for _ in range(5):
            engine.record_sync(TEST_PATIENT_ID, TEST_DEVICE_ID, SyncStatus.SYNCED)
        assert len(engine.get_sync_history(TEST_PATIENT_ID, limit=3)) == 3

    def test_last_sync_per_device_ignores_failures(self, engine: TelemetryEngine) -> None:
        synced = engine.record_sync(TEST_PATIENT_ID, TEST_DEVICE_ID, SyncStatus.SYNCED)
        engine.record_sync(TEST_PATIENT_ID, TEST_DEVICE_ID, SyncStatus.FAILED, error_message="timeout")
        engine.record_sync(TEST_PATIENT_ID, "oxi-001", SyncStatus.CONFLICT)

        assert engine.get_last_sync_per_device(TEST_PATIENT_ID) == {TEST_DEVICE_ID: synced.timestamp}

    def test_unknown_patient(self, engine: TelemetryEngine) -> None:
        assert engine.get_sync_history("nobody") == []
        assert engine.get_last_sync_per_device("nobody") == {}
