"""Ingestion pipeline: validate → normalize → deduplicate → commit.

Batch and real-time intake both end in a merge against the patient's
current store under that patient's write lock.  A bad reading is counted
and reported, never raised, so one reading cannot poison a batch.

Interpolation is a separate maintenance pass.  It runs after a batch when
``interpolation.after_batch`` is set (or the caller asks for it) and never
on real-time intake, which lacks a complete local series.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from src.telemetry.base import NormalizedPoint, RawReading
from src.telemetry.config_loader import IngestionConfig
from src.telemetry.devices import DeviceRegistry
from src.telemetry.interpolator import interpolate
from src.telemetry.store import PatientPartition, PatientRegistry
from src.telemetry.sync.dedup import PointKey, merge_with_stats, point_key
from src.telemetry.validator import REASON_PATIENT_MISMATCH, Rejection, normalize

logger = logging.getLogger("mendwell.telemetry.pipeline")


@dataclass
class BatchResult:
    """Counts reported back for one ingested batch.

    Attributes:
        accepted:           Readings that passed validation.
        rejected:           Readings that failed validation.
        duplicates_removed: Store shrinkage caused by dedup (not by rejection).
        conflicts_resolved: Keys where candidates disagreed on value.
        interpolated:       Points added by the post-batch interpolation pass.
        rejections:         Per-reading rejection reasons.
    """

    accepted: int = 0
    rejected: int = 0
    duplicates_removed: int = 0
    conflicts_resolved: int = 0
    interpolated: int = 0
    rejections: list[Rejection] = field(default_factory=list)


class IngestionPipeline:
    """Turns raw readings into committed, deduplicated normalized points.

    Usage::

        pipeline = IngestionPipeline(config, PatientRegistry(), DeviceRegistry())
        result = pipeline.ingest_batch("patient-001", readings)
        point = pipeline.ingest_one(reading)
    """

    def __init__(
        self,
        config: IngestionConfig,
        registry: PatientRegistry,
        devices: DeviceRegistry | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._devices = devices or DeviceRegistry()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def ingest_batch(
        self,
        patient_id: str,
        readings: Iterable[RawReading],
        interpolate: bool | None = None,
        archive: bool = True,
    ) -> BatchResult:
        """Validate, normalize and merge a batch of readings for one patient.

        Args:
            patient_id:  Patient whose store receives the batch.  Readings
                         tagged with another patient are rejected.
            readings:    Raw readings, in any order.
            interpolate: Run the gap-filling pass afterwards.  Defaults to
                         ``interpolation.after_batch``.
            archive:     Keep this patient's raw readings in the partition's
                         raw archive.  Offline replay archives an entry once.

        Returns:
            BatchResult with accepted / rejected / duplicates_removed counts.
        """
        result = BatchResult()
        accepted: list[NormalizedPoint] = []
        readings = list(readings)

        for raw in readings:
            if raw.patient_id != patient_id:
                result.rejections.append(
                    Rejection(raw.reading_id, raw.metric, REASON_PATIENT_MISMATCH)
                )
                continue
            point, validation = normalize(
                raw, self._config, self._devices.timezone_for(raw.device_id)
            )
            if point is None:
                result.rejections.append(Rejection(raw.reading_id, raw.metric, validation.reason))
                continue
            accepted.append(point)

        result.accepted = len(accepted)
        result.rejected = len(result.rejections)

        partition = self._registry.get_or_create(patient_id)
        with partition.lock:
            merged = merge_with_stats(partition.snapshot(), accepted)
            partition.commit(merged.points)
            if archive:
                partition.raw_archive.extend(r for r in readings if r.patient_id == patient_id)
            result.duplicates_removed = merged.duplicates_removed
            result.conflicts_resolved = merged.conflicts_resolved

            run_pass = self._config.interpolation.after_batch if interpolate is None else interpolate
            if run_pass and accepted:
                result.interpolated = self._interpolation_pass(partition)

        logger.info(
            "Ingested batch for %s: %d accepted, %d rejected, %d duplicates removed, "
            "%d interpolated",
            patient_id, result.accepted, result.rejected,
            result.duplicates_removed, result.interpolated,
        )
        return result

    def ingest_one(self, raw: RawReading) -> NormalizedPoint | None:
        """Validate and merge a single real-time reading.

        Returns:
            The point held in the store for the reading's key afterwards
            (the new point unless an equal-or-better one was already there),
            or None when the reading is rejected.
        """
        point, validation = normalize(
            raw, self._config, self._devices.timezone_for(raw.device_id)
        )
        partition = self._registry.get_or_create(raw.patient_id)

        with partition.lock:
            partition.raw_archive.append(raw)
            if point is None:
                return None
            merged = merge_with_stats(partition.snapshot(), [point])
            partition.commit(merged.points)

        if merged.duplicates_removed:
            key = point_key(point)
            kept = next(p for p in merged.points if point_key(p) == key)
            if kept is not point:
                logger.debug(
                    "Real-time point %s superseded by stored %s", point.point_id, kept.point_id
                )
            return kept
        return point

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def run_interpolation(self, patient_id: str, metrics: Iterable[str] | None = None) -> int:
        """Fill short gaps for a patient's gap-sensitive metrics.

        Args:
            patient_id: Patient to process.
            metrics:    Metrics to fill; defaults to the configured
                        gap-sensitive metrics.

        Returns:
            Number of interpolated points committed.
        """
        partition = self._registry.get(patient_id)
        if partition is None:
            return 0
        with partition.lock:
            return self._interpolation_pass(partition, metrics)

    def _interpolation_pass(
        self,
        partition: PatientPartition,
        metrics: Iterable[str] | None = None,
    ) -> int:
        """Rebuild fills from device points and merge.  Caller holds ``partition.lock``.

        Fills are always computed from non-interpolated points, so a fill
        whose gap has since received device data (for example through
        offline replay) is dropped rather than kept beside the real point.

        Returns:
            Number of interpolated points not previously in the store.
        """
        targets = list(metrics) if metrics is not None else list(
            self._config.interpolation.gap_sensitive_metrics
        )
        current = partition.snapshot()
        synthesized: list[NormalizedPoint] = []
        stale: set[PointKey] = set()

        for metric in targets:
            interval = self._config.interval_for(metric)
            if interval is None:
                logger.warning("Skipping interpolation for unknown metric %r", metric)
                continue
            measured = [p for p in current if p.metric == metric and not p.is_interpolated]
            fills = interpolate(measured, metric, interval, self._config.interpolation)
            fill_values = {point_key(p): p.value for p in fills}
            stale.update(
                point_key(p)
                for p in current
                if p.metric == metric
                and p.is_interpolated
                and fill_values.get(point_key(p)) != p.value
            )
            synthesized.extend(fills)

        kept = [p for p in current if not (p.is_interpolated and point_key(p) in stale)]
        held = {point_key(p) for p in kept}
        added = sum(1 for p in synthesized if point_key(p) not in held)
        if not added and not stale:
            return 0

        merged = merge_with_stats(kept, synthesized)
        partition.commit(merged.points)
        logger.debug(
            "Interpolation pass for %s added %d and dropped %d point(s)",
            partition.patient_id, added, len(stale),
        )
        return added
