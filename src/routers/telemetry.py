"""Telemetry endpoints: ingestion, retrieval, devices, offline queue, sync and quality."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import TelemetryEngineDep
from src.models.base import ErrorDetail
from src.models.telemetry import (
    BatchIn,
    BatchResultRead,
    DataQualityReportRead,
    DeviceCreate,
    DeviceRead,
    DeviceStatusRead,
    DeviceUpdate,
    IngestOneRead,
    InterpolateIn,
    InterpolateRead,
    NormalizedPointRead,
    OfflineQueueEntryRead,
    OfflineQueueIn,
    OfflineQueueRead,
    RawReadingIn,
    ReplayResultRead,
    SyncRecordRead,
)
from src.telemetry.devices import UnknownDeviceError

router = APIRouter(prefix="/telemetry", tags=["telemetry"])


# ---------- Ingestion ----------

@router.post("/patients/{patient_id}/readings", response_model=BatchResultRead)
async def ingest_batch(patient_id: str, engine: TelemetryEngineDep, body: BatchIn) -> Any:
    result = engine.ingest_batch(
        patient_id,
        [r.to_raw() for r in body.readings],
        interpolate=body.interpolate,
    )
    return BatchResultRead.model_validate(result)


@router.post("/readings", response_model=IngestOneRead)
async def ingest_one(engine: TelemetryEngineDep, body: RawReadingIn) -> Any:
    point = engine.ingest_one(body.to_raw())
    if point is None:
        return IngestOneRead(accepted=False, point=None)
    return IngestOneRead(accepted=True, point=NormalizedPointRead.model_validate(point))


@router.post("/patients/{patient_id}/interpolate", response_model=InterpolateRead)
async def run_interpolation(
    patient_id: str, engine: TelemetryEngineDep, body: InterpolateIn | None = None
) -> Any:
    metrics = body.metrics if body else None
    return InterpolateRead(interpolated=engine.run_interpolation(patient_id, metrics))


# ---------- Retrieval ----------

@router.get("/patients/{patient_id}/data", response_model=list[NormalizedPointRead])
async def get_data(
    patient_id: str,
    engine: TelemetryEngineDep,
    metric: str | None = None,
    device_id: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    include_outliers: bool = True,
    include_interpolated: bool = True,
) -> Any:
    points = engine.get_data(
        patient_id,
        metric=metric,
        device_id=device_id,
        start_time=start_time,
        end_time=end_time,
        include_outliers=include_outliers,
        include_interpolated=include_interpolated,
    )
    return [NormalizedPointRead.model_validate(p) for p in points]


@router.get("/patients/{patient_id}/latest", response_model=dict[str, NormalizedPointRead])
async def get_latest_metrics(patient_id: str, engine: TelemetryEngineDep) -> Any:
    latest = engine.get_latest_metrics(patient_id)
    return {metric: NormalizedPointRead.model_validate(p) for metric, p in latest.items()}


@router.get("/patients/{patient_id}/quality", response_model=DataQualityReportRead)
async def get_quality_report(
    patient_id: str,
    engine: TelemetryEngineDep,
    period_start: datetime | None = None,
    period_end: datetime | None = None,
) -> Any:
    report = engine.get_data_quality_report(patient_id, period_start, period_end)
    return DataQualityReportRead.model_validate(report)


# ---------- Offline queue & sync ----------

@router.post(
    "/patients/{patient_id}/offline-queue",
    response_model=OfflineQueueEntryRead,
    status_code=202,
)
async def queue_offline_data(
    patient_id: str, engine: TelemetryEngineDep, body: OfflineQueueIn
) -> Any:
    entry = engine.queue_offline_data(
        body.device_id,
        patient_id,
        [r.to_raw() for r in body.readings],
        max_retries=body.max_retries,
    )
    return OfflineQueueEntryRead.from_entry(entry)


@router.post("/patients/{patient_id}/offline-queue/process", response_model=ReplayResultRead)
async def process_offline_queue(patient_id: str, engine: TelemetryEngineDep) -> Any:
    return ReplayResultRead.model_validate(engine.process_offline_queue(patient_id))


@router.get("/patients/{patient_id}/offline-queue", response_model=OfflineQueueRead)
async def get_offline_queue(patient_id: str, engine: TelemetryEngineDep) -> Any:
    return OfflineQueueRead(
        size=engine.get_offline_queue_size(patient_id),
        entries=[OfflineQueueEntryRead.from_entry(e) for e in engine.get_offline_queue(patient_id)],
        failed=[
            OfflineQueueEntryRead.from_entry(e)
            for e in engine.get_failed_offline_entries(patient_id)
        ],
    )


@router.get("/patients/{patient_id}/sync-history", response_model=list[SyncRecordRead])
async def get_sync_history(
    patient_id: str,
    engine: TelemetryEngineDep,
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> Any:
    return [SyncRecordRead.model_validate(r) for r in engine.get_sync_history(patient_id, limit)]


# ---------- Devices ----------

@router.get("/patients/{patient_id}/devices", response_model=list[DeviceRead])
async def list_devices(patient_id: str, engine: TelemetryEngineDep) -> Any:
    return [DeviceRead.model_validate(d) for d in engine.get_devices(patient_id)]


@router.post("/devices", response_model=DeviceRead, status_code=201)
async def register_device(engine: TelemetryEngineDep, body: DeviceCreate) -> Any:
    return DeviceRead.model_validate(engine.register_device(body.to_device()))


@router.patch(
    "/devices/{device_id}",
    response_model=DeviceRead,
    responses={404: {"model": ErrorDetail}},
)
async def update_device(device_id: str, engine: TelemetryEngineDep, body: DeviceUpdate) -> Any:
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        device = engine.update_device(device_id, **updates)
    except UnknownDeviceError:
        raise HTTPException(status_code=404, detail="Device not found")
    return DeviceRead.model_validate(device)


@router.get(
    "/devices/{device_id}/status",
    response_model=DeviceStatusRead,
    responses={404: {"model": ErrorDetail}},
)
async def get_device_status(device_id: str, engine: TelemetryEngineDep) -> Any:
    status = engine.get_device_status(device_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return DeviceStatusRead.model_validate(status)
