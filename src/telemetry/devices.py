"""Registered device bookkeeping.

Tracks the sensors each patient wears: type, cadence, clock timezone,
battery, connectivity and calibration.  The pipeline uses a device's
timezone to read naive reading timestamps.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from src.telemetry.base import ConnectionStatus, Device, DeviceType, utc_now

logger = logging.getLogger("mendwell.telemetry.devices")


class UnknownDeviceError(KeyError):
    """Raised when an operation names a device that was never registered."""


@dataclass(frozen=True)
class DeviceStatus:
    """Battery, connectivity and calibration snapshot for one device."""

    device_id: str
    battery_level: int
    connection_status: ConnectionStatus
    is_calibrated: bool
    calibration_due: bool
    last_sync: datetime | None = None


class DeviceRegistry:
    """Thread-safe device_id → Device map."""

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}
        self._lock = threading.Lock()

    def register_device(self, device: Device) -> Device:
        """Register or replace a device."""
        with self._lock:
            replaced = device.device_id in self._devices
            self._devices[device.device_id] = device
        logger.info(
            "%s device %s (%s) for patient %s",
            "Re-registered" if replaced else "Registered",
            device.device_id, device.device_type.value, device.patient_id,
        )
        return device

    def get_device(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def get_devices(self, patient_id: str) -> list[Device]:
        """Return a patient's devices in registration order."""
        with self._lock:
            devices = [d for d in self._devices.values() if d.patient_id == patient_id]
        return sorted(devices, key=lambda d: d.registered_at)

    def get_devices_by_type(self, patient_id: str, device_type: DeviceType) -> list[Device]:
        return [d for d in self.get_devices(patient_id) if d.device_type == device_type]

    def all_devices(self) -> list[Device]:
        with self._lock:
            return list(self._devices.values())

    def timezone_for(self, device_id: str) -> str | None:
        device = self._devices.get(device_id)
        return device.timezone if device else None

    def update_device(
        self,
        device_id: str,
        connection_status: ConnectionStatus | None = None,
        battery_level: int | None = None,
    ) -> Device:
        """Replace a device's connectivity and/or battery fields.

        Raises:
            UnknownDeviceError: If the device is not registered.
            ValueError:         If battery_level is outside 0-100.
        """
        if battery_level is not None and not 0 <= battery_level <= 100:
            raise ValueError(f"battery_level must be within 0-100, got {battery_level}")

        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                raise UnknownDeviceError(device_id)
            changes: dict = {}
            if connection_status is not None:
                changes["connection_status"] = ConnectionStatus(connection_status)
            if battery_level is not None:
                changes["battery_level"] = battery_level
            updated = dataclasses.replace(device, **changes)
            self._devices[device_id] = updated
        return updated

    def status(
        self,
        device_id: str,
        last_sync: datetime | None = None,
        now: datetime | None = None,
    ) -> DeviceStatus | None:
        """Return the device's status, or None if it is not registered."""
        device = self._devices.get(device_id)
        if device is None:
            return None
        current = now or utc_now()
        due = device.calibration_due_date
        return DeviceStatus(
            device_id=device.device_id,
            battery_level=device.battery_level,
            connection_status=device.connection_status,
            is_calibrated=device.calibration_date is not None,
            calibration_due=due is not None and current >= due,
            last_sync=last_sync,
        )

    def clear(self) -> None:
        with self._lock:
            self._devices.clear()
