"""Deduplication logic for normalized telemetry.

Prevents the store from holding two points for the same observation when
the same reading arrives through more than one path (live stream, offline
replay, a second device reporting the same metric at the same instant).

Dedup key:
    (patient_id, metric, timestamp), timestamps compared in UTC.

Conflict rule:
    the candidate with the highest quality score wins; on a tie the earlier
    candidate stays, so an existing point is never evicted by an equally
    good incoming one.  Repeated re-ingestion therefore cannot oscillate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from itertools import chain
from typing import Iterable

from src.telemetry.base import NormalizedPoint

logger = logging.getLogger("mendwell.telemetry.sync.dedup")

PointKey = tuple[str, str, datetime]


class StoreInvariantViolation(RuntimeError):
    """A store was about to hold two points for the same key.

    This is a programming error, not a data problem: it means a write path
    bypassed ``merge``.  Never caught inside the engine.
    """


def point_key(point: NormalizedPoint) -> PointKey:
    """Return the dedup key for a normalized point."""
    return (point.patient_id, point.metric, point.timestamp)


@dataclass
class MergeResult:
    """Deduplicated union plus what the merge had to resolve.

    Attributes:
        points:             Surviving points, sorted by (timestamp, metric).
        duplicates_removed: Candidates dropped because their key was taken.
        conflicts_resolved: Keys whose candidates disagreed on value.
    """

    points: list[NormalizedPoint] = field(default_factory=list)
    duplicates_removed: int = 0
    conflicts_resolved: int = 0


def merge_with_stats(
    existing: Iterable[NormalizedPoint],
    incoming: Iterable[NormalizedPoint],
) -> MergeResult:
    """Merge two point collections, keeping the best candidate per key.

    Pure: neither input is modified.  Idempotent:
    ``merge(merge(a, b), b) == merge(a, b)``.
    """
    survivors: dict[PointKey, NormalizedPoint] = {}
    conflicted: set[PointKey] = set()
    candidates = 0

    for point in chain(existing, incoming):
        candidates += 1
        key = point_key(point)
        held = survivors.get(key)
        if held is None:
            survivors[key] = point
            continue
        if held.value != point.value:
            conflicted.add(key)
        if point.quality_score > held.quality_score:
            survivors[key] = point

    points = sorted(survivors.values(), key=lambda p: (p.timestamp, p.metric))
    return MergeResult(
        points=points,
        duplicates_removed=candidates - len(points),
        conflicts_resolved=len(conflicted),
    )


def merge(
    existing: Iterable[NormalizedPoint],
    incoming: Iterable[NormalizedPoint],
) -> list[NormalizedPoint]:
    """Return the deduplicated union of ``existing`` and ``incoming``."""
    return merge_with_stats(existing, incoming).points


def assert_unique_keys(points: Iterable[NormalizedPoint]) -> None:
    """Raise StoreInvariantViolation if any key appears twice."""
    seen: set[PointKey] = set()
    for point in points:
        key = point_key(point)
        if key in seen:
            logger.critical("Duplicate store key %s (point %s)", key, point.point_id)
            raise StoreInvariantViolation(
                f"Duplicate point for patient={key[0]} metric={key[1]} "
                f"timestamp={key[2].isoformat()}"
            )
        seen.add(key)
