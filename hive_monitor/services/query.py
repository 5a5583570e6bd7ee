"""
Query Service - dashboard views over devices and readings

All methods are read-only. Liveness is inferred from the age of the
latest reading; there is no heartbeat protocol.
"""

from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from hive_monitor.core.config import settings
from hive_monitor.core.database import utcnow
from hive_monitor.core.errors import InvalidPayload
from hive_monitor.models.device import Device
from hive_monitor.models.reading import Reading
from hive_monitor.services.policy import ThresholdPolicyStore
from hive_monitor.services.readings import ReadingStore, downsample, reading_to_dict
from hive_monitor.services.registry import DeviceRegistry

RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_RANGE = "24h"


def range_to_delta(range_key: str) -> timedelta:
    try:
        return RANGES[range_key]
    except KeyError:
        raise InvalidPayload(
            f"range must be one of: {', '.join(RANGES)}", field="range"
        )


def seconds_since(reading: Reading | None, now: datetime) -> int | None:
    if reading is None:
        return None
    return int((now - reading.recorded_at).total_seconds())


def is_online(reading: Reading | None, now: datetime, threshold_seconds: float) -> bool:
    """Online while the latest reading is younger than the threshold."""
    if reading is None:
        return False
    return (now - reading.recorded_at).total_seconds() < threshold_seconds


def device_to_dict(device: Device, include_credential: bool = False) -> dict:
    data = {
        "id": device.id,
        "name": device.name,
        "is_active": device.is_active,
        "created_at": device.created_at.isoformat() if device.created_at else None,
    }
    if include_credential:
        data["credential"] = device.credential
    return data


class QueryService:
    """Latest-per-device, windowed series and aggregates."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.registry = DeviceRegistry(session)
        self.readings = ReadingStore(session)

    async def list_devices_with_status(self, include_credential: bool = False) -> list[dict]:
        now = self.clock()
        devices = []

        for device in await self.registry.list_active():
            latest = await self.readings.latest_for(device.id)
            devices.append({
                **device_to_dict(device, include_credential),
                "latest": reading_to_dict(latest) if latest else None,
                "is_online": is_online(latest, now, settings.online_threshold_seconds),
                "seconds_ago": seconds_since(latest, now),
            })

        return devices

    async def detail_for(
        self,
        device_id: int,
        range_key: str = DEFAULT_RANGE,
        max_points: int | None = None,
        include_credential: bool = False,
    ) -> dict:
        """Device with its readings in range (oldest first) and aggregates."""
        since_delta = range_to_delta(range_key)
        device = await self.registry.get(device_id)

        now = self.clock()
        since = now - since_delta

        readings = await self.readings.window_for(device.id, since)
        latest = await self.readings.latest_for(device.id)
        stats = await self.readings.aggregate_for(device.id, since)

        return {
            **device_to_dict(device, include_credential),
            "range": range_key,
            "latest": reading_to_dict(latest) if latest else None,
            "is_online": is_online(latest, now, settings.online_threshold_seconds),
            "seconds_ago": seconds_since(latest, now),
            "readings": [reading_to_dict(r) for r in downsample(readings, max_points)],
            "stats": stats,
        }

    async def chart_series(
        self,
        device_id: int | None,
        hours: float = 24,
        max_points: int | None = None,
    ) -> list[Reading]:
        """Oldest-first readings for charting, downsampled to max_points."""
        if device_id is not None:
            await self.registry.get(device_id)
        since = self.clock() - timedelta(hours=hours)
        readings = await self.readings.window_for(device_id, since)
        return downsample(readings, max_points or settings.chart_max_points)

    async def stats(self, device_id: int | None, hours: float = 24) -> dict:
        if device_id is not None:
            await self.registry.get(device_id)
        since = self.clock() - timedelta(hours=hours)
        return await self.readings.aggregate_for(device_id, since)

    async def lvd_status(self) -> dict:
        """Latest battery/relay telemetry plus the current policy."""
        now = self.clock()
        latest = await self.readings.latest_with_battery()
        policy = await ThresholdPolicyStore(self.session).get()

        lvd = None
        if latest is not None:
            lvd = {
                "device_id": latest.device_id,
                "battery_voltage": latest.battery_voltage,
                "battery_percent": latest.battery_percent,
                "relay_connected": latest.relay_connected,
                "recorded_at": latest.recorded_at.isoformat(),
                "is_online": is_online(latest, now, settings.lvd_online_threshold_seconds),
            }

        return {"lvd": lvd, "settings": policy.to_dict()}

    async def lvd_history(
        self,
        hours: float = 24,
        limit: int = 100,
        device_id: int | None = None,
    ) -> list[dict]:
        """Battery and relay telemetry over the last ``hours``, newest first."""
        if device_id is not None:
            await self.registry.get(device_id)
        since = self.clock() - timedelta(hours=hours)
        readings = await self.readings.battery_history(since, limit=limit, device_id=device_id)
        return [
            {
                "id": r.id,
                "device_id": r.device_id,
                "battery_voltage": r.battery_voltage,
                "battery_percent": r.battery_percent,
                "relay_connected": r.relay_connected,
                "recorded_at": r.recorded_at.isoformat(),
            }
            for r in readings
        ]
