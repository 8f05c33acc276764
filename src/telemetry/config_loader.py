"""Load, validate, and hot-reload the Mendwell ingestion policy.

The policy lives in ``ingestion_config.yaml`` alongside this module: the
per-metric range table plus the interpolation, reporting and offline-queue
constants.  At startup it is loaded once and cached.  Call
``reload_ingestion_config()`` to re-read from disk after an edit, no restart
required.

Usage::

    from src.telemetry.config_loader import get_ingestion_config

    config = get_ingestion_config()
    hr = config.metric("heart_rate_resting")      # MetricDefinition
    config.interpolation.fill_max_ratio            # 3.0
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.telemetry.base import MetricDefinition

logger = logging.getLogger("mendwell.telemetry.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "ingestion_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class QualityPolicy:
    """Scores assigned by the validator."""

    outlier_score: float = 0.4
    valid_score: float = 1.0


@dataclass
class InterpolationPolicy:
    """When and how short gaps are filled.

    A gap between two consecutive points is fillable when
    ``fill_min_ratio * interval < gap <= fill_max_ratio * interval``.
    """

    after_batch: bool = True
    fill_min_ratio: float = 1.5
    fill_max_ratio: float = 3.0
    interpolated_score: float = 0.6
    gap_sensitive_metrics: dict[str, float] = field(default_factory=dict)


@dataclass
class ReportingPolicy:
    """Data quality report settings."""

    gap_detection_metric: str = "heart_rate_resting"
    gap_threshold_minutes: float = 480.0
    default_period_days: int = 30


@dataclass
class OfflineQueuePolicy:
    max_retries: int = 5


@dataclass
class IngestionConfig:
    """Complete, validated ingestion policy.

    This is the single in-memory representation of ingestion_config.yaml.
    The validator, interpolator, offline queue and reporter all read from
    this object.

    Attributes:
        version:       Config schema version string.
        metrics:       metric identifier → MetricDefinition.
        quality:       Validator scoring policy.
        interpolation: Gap-filling policy.
        reporting:     Quality report policy.
        offline_queue: Offline replay policy.
    """

    version: str
    metrics: dict[str, MetricDefinition]
    quality: QualityPolicy = field(default_factory=QualityPolicy)
    interpolation: InterpolationPolicy = field(default_factory=InterpolationPolicy)
    reporting: ReportingPolicy = field(default_factory=ReportingPolicy)
    offline_queue: OfflineQueuePolicy = field(default_factory=OfflineQueuePolicy)
    _raw: dict = field(default_factory=dict, repr=False)

    def metric(self, metric: str) -> MetricDefinition | None:
        """Return the definition for a metric, or None if it is unknown."""
        return self.metrics.get(metric)

    def interval_for(self, metric: str) -> float | None:
        """Return the interval used to size gaps for ``metric``.

        Gap-sensitive metrics carry their own interval; otherwise the
        metric's nominal sampling interval is used.
        """
        override = self.interpolation.gap_sensitive_metrics.get(metric)
        if override is not None:
            return override
        definition = self.metrics.get(metric)
        return definition.sampling_interval_minutes if definition else None


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when ingestion_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Ingestion config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> IngestionConfig:
    """Validate the raw YAML dict and construct an IngestionConfig.

    Collects every problem before raising so a bad edit is reported in one
    pass.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _number(d: dict, key: str, where: str, default: Any = None) -> float | None:
        val = d.get(key, default)
        if val is None:
            errors.append(f"Missing required key '{key}' in '{where}'")
            return None
        try:
            return float(val)
        except (TypeError, ValueError):
            errors.append(f"{where}.{key} must be a number, got {val!r}")
            return None

    version = str(raw.get("version", "1.0"))

    # ── Metric range table ──
    metrics_raw = raw.get("metrics") or {}
    if not metrics_raw:
        errors.append("'metrics' section is missing or empty")

    metrics: dict[str, MetricDefinition] = {}
    for name, entry in metrics_raw.items():
        where = f"metrics.{name}"
        if not isinstance(entry, dict):
            errors.append(f"{where} must be a mapping")
            continue
        hard_min = _number(entry, "hard_min", where)
        hard_max = _number(entry, "hard_max", where)
        outlier_min = _number(entry, "outlier_min", where, entry.get("hard_min"))
        outlier_max = _number(entry, "outlier_max", where, entry.get("hard_max"))
        interval = _number(entry, "interval_minutes", where)
        if None in (hard_min, hard_max, outlier_min, outlier_max, interval):
            continue
        if not (hard_min <= outlier_min <= outlier_max <= hard_max):
            errors.append(
                f"{where} bounds must satisfy hard_min <= outlier_min <= "
                f"outlier_max <= hard_max"
            )
        if interval <= 0:
            errors.append(f"{where}.interval_minutes must be positive")
        metrics[name] = MetricDefinition(
            metric=name,
            hard_min=hard_min,
            hard_max=hard_max,
            outlier_min=outlier_min,
            outlier_max=outlier_max,
            unit=str(entry.get("unit", "")),
            sampling_interval_minutes=interval,
        )

    # ── Quality ──
    q_raw = raw.get("quality") or {}
    quality = QualityPolicy(
        outlier_score=float(q_raw.get("outlier_score", 0.4)),
    )
    if not (0.0 < quality.outlier_score < quality.valid_score):
        errors.append("quality.outlier_score must be in (0, 1)")

    # ── Interpolation ──
    i_raw = raw.get("interpolation") or {}
    gap_sensitive: dict[str, float] = {}
    for name, interval in (i_raw.get("gap_sensitive_metrics") or {}).items():
        try:
            gap_sensitive[name] = float(interval)
        except (TypeError, ValueError):
            errors.append(
                f"interpolation.gap_sensitive_metrics.{name} must be a number, "
                f"got {interval!r}"
            )
            continue
        if gap_sensitive[name] <= 0:
            errors.append(f"interpolation.gap_sensitive_metrics.{name} must be positive")
        if metrics_raw and name not in metrics_raw:
            errors.append(f"interpolation.gap_sensitive_metrics.{name} is not a defined metric")

    interpolation = InterpolationPolicy(
        after_batch=bool(i_raw.get("after_batch", True)),
        fill_min_ratio=float(i_raw.get("fill_min_ratio", 1.5)),
        fill_max_ratio=float(i_raw.get("fill_max_ratio", 3.0)),
        interpolated_score=float(i_raw.get("interpolated_score", 0.6)),
        gap_sensitive_metrics=gap_sensitive,
    )
    if not (1.0 <= interpolation.fill_min_ratio < interpolation.fill_max_ratio):
        errors.append("interpolation ratios must satisfy 1 <= fill_min_ratio < fill_max_ratio")
    if not (0.0 < interpolation.interpolated_score <= 1.0):
        errors.append("interpolation.interpolated_score must be in (0, 1]")

    # ── Reporting ──
    r_raw = raw.get("reporting") or {}
    reporting = ReportingPolicy(
        gap_detection_metric=str(r_raw.get("gap_detection_metric", "heart_rate_resting")),
        gap_threshold_minutes=float(r_raw.get("gap_threshold_minutes", 480)),
        default_period_days=int(r_raw.get("default_period_days", 30)),
    )
    if reporting.gap_threshold_minutes <= 0:
        errors.append("reporting.gap_threshold_minutes must be positive")
    if reporting.default_period_days <= 0:
        errors.append("reporting.default_period_days must be positive")
    if metrics_raw and reporting.gap_detection_metric not in metrics_raw:
        logger.warning(
            "Gap detection metric %r is not defined; quality reports will show no gaps",
            reporting.gap_detection_metric,
        )

    # ── Offline queue ──
    o_raw = raw.get("offline_queue") or {}
    offline_queue = OfflineQueuePolicy(max_retries=int(o_raw.get("max_retries", 5)))
    if offline_queue.max_retries < 1:
        errors.append("offline_queue.max_retries must be at least 1")

    if errors:
        raise ConfigValidationError(
            f"ingestion_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return IngestionConfig(
        version=version,
        metrics=metrics,
        quality=quality,
        interpolation=interpolation,
        reporting=reporting,
        offline_queue=offline_queue,
        _raw=raw,
    )


def load_ingestion_config(path: Path | None = None) -> IngestionConfig:
    """Load and validate the ingestion policy from disk.

    Args:
        path: Override path to YAML. Uses the bundled ingestion_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info(
        "Loaded ingestion config v%s from %s (%d metrics)",
        config.version, target, len(config.metrics),
    )
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: IngestionConfig | None = None
_config_lock = threading.Lock()


def get_ingestion_config() -> IngestionConfig:
    """Return the global IngestionConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_ingestion_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_ingestion_config()
    return _config


def reload_ingestion_config(path: Path | None = None) -> IngestionConfig:
    """Reload the policy from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is
    re-raised.  Engines built before the reload keep the config they were
    constructed with.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_ingestion_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded ingestion config: %s → %s", old_version, new_config.version)
    return new_config
