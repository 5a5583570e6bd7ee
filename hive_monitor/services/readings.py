"""
Reading Store - append-only time series of sensor observations
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Sequence, TypeVar

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from hive_monitor.core.config import settings
from hive_monitor.core.database import utcnow
from hive_monitor.core.errors import InvalidPayload, NotFound, OutOfRange
from hive_monitor.models.device import Device
from hive_monitor.models.reading import Reading

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Plausibility limits
TEMPERATURE_RANGE = (-40.0, 85.0)  # Celsius, sensor operating range
PERCENT_RANGE = (0.0, 100.0)
VOLTAGE_RANGE = (0.0, 5.0)  # V
MAX_WEIGHT_KG = 500.0

# 1S Li-ion: 3.0V = 0%, 4.2V = 100%
BATTERY_EMPTY_VOLTAGE = 3.0
BATTERY_FULL_VOLTAGE = 4.2

NUMERIC_FIELDS = (
    "temperature",
    "secondary_temperature",
    "humidity",
    "weight",
    "battery_voltage",
    "battery_percent",
)
READING_FIELDS = NUMERIC_FIELDS + ("relay_connected",)


def battery_percent(voltage: float) -> int:
    """Linear battery percentage for a single lithium cell, clamped to 0..100."""
    percent = (voltage - BATTERY_EMPTY_VOLTAGE) / (BATTERY_FULL_VOLTAGE - BATTERY_EMPTY_VOLTAGE) * 100
    return max(0, min(100, round(percent)))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _relay_flag(value) -> bool:
    """Relay state as a boolean; firmware reports either true/false or 1/0."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise InvalidPayload("relay_connected must be a boolean", field="relay_connected")


def _reject_outside(field: str, value: float, low: float, high: float, unit: str) -> float:
    if not (low <= value <= high):
        raise OutOfRange(f"{field} out of range ({low:g} to {high:g}{unit})", field=field)
    return value


def validate_fields(fields: dict) -> dict:
    """
    Check plausibility of reading fields and return the values to store.

    Physically impossible values (extreme temperature, voltage) are rejected
    as sensor/wiring faults. Values shaped like sensor noise (negative
    weight, humidity a hair above 100%) are clamped.
    """
    unknown = set(fields) - set(READING_FIELDS)
    if unknown:
        raise InvalidPayload(f"Unknown fields: {', '.join(sorted(unknown))}")

    clean = {}
    for field, value in fields.items():
        if value is None:
            continue

        if field == "relay_connected":
            clean[field] = _relay_flag(value)
            continue

        try:
            value = float(value)
        except (TypeError, ValueError):
            raise InvalidPayload(f"{field} must be a number", field=field)
        if not math.isfinite(value):
            raise OutOfRange(f"{field} must be a finite number", field=field)

        if field in ("temperature", "secondary_temperature"):
            value = _reject_outside(field, value, *TEMPERATURE_RANGE, "°C")
        elif field == "humidity":
            value = _clamp(value, *PERCENT_RANGE)
        elif field == "weight":
            if value > MAX_WEIGHT_KG:
                raise OutOfRange(f"weight out of range (max {MAX_WEIGHT_KG:g}kg)", field=field)
            value = max(0.0, value)
        elif field == "battery_voltage":
            value = _reject_outside(field, value, *VOLTAGE_RANGE, "V")
        elif field == "battery_percent":
            value = _clamp(value, *PERCENT_RANGE)

        clean[field] = value

    if "battery_voltage" in clean and "battery_percent" not in clean:
        clean["battery_percent"] = float(battery_percent(clean["battery_voltage"]))

    return clean


def downsample(items: Sequence[T], max_points: int | None) -> list[T]:
    """Evenly spaced subset: every ceil(n / max_points)-th item, starting at the first."""
    if not max_points or max_points <= 0 or len(items) <= max_points:
        return list(items)
    stride = math.ceil(len(items) / max_points)
    return list(items[::stride])


def reading_to_dict(reading: Reading) -> dict:
    return {
        "id": reading.id,
        "device_id": reading.device_id,
        "temperature": reading.temperature,
        "secondary_temperature": reading.secondary_temperature,
        "humidity": reading.humidity,
        "weight": reading.weight,
        "battery_voltage": reading.battery_voltage,
        "battery_percent": reading.battery_percent,
        "relay_connected": reading.relay_connected,
        "recorded_at": reading.recorded_at.isoformat(),
    }


class ReadingStore:
    """Append and query readings. Readings are never updated."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        device_id: int,
        fields: dict,
        recorded_at: datetime | None = None,
    ) -> Reading:
        """Validate and persist one reading; timestamp defaults to now."""
        if await self.session.get(Device, device_id) is None:
            raise NotFound(f"Device {device_id} not found")

        if recorded_at is not None:
            latest_allowed = utcnow() + timedelta(seconds=settings.max_clock_skew_seconds)
            if recorded_at > latest_allowed:
                raise InvalidPayload("recorded_at is in the future", field="recorded_at")

        clean = validate_fields(fields)

        reading = Reading(
            device_id=device_id,
            recorded_at=recorded_at or utcnow(),
            **clean,
        )
        self.session.add(reading)
        await self.session.commit()
        return reading

    async def latest_for(self, device_id: int) -> Reading | None:
        result = await self.session.execute(
            select(Reading)
            .where(Reading.device_id == device_id)
            .order_by(desc(Reading.recorded_at), desc(Reading.id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def window_for(
        self,
        device_id: int | None,
        since: datetime,
        until: datetime | None = None,
    ) -> list[Reading]:
        """Readings in [since, until], oldest first; ties keep insertion order."""
        query = select(Reading).where(Reading.recorded_at >= since)
        if device_id is not None:
            query = query.where(Reading.device_id == device_id)
        if until is not None:
            query = query.where(Reading.recorded_at <= until)

        result = await self.session.execute(query.order_by(Reading.recorded_at, Reading.id))
        return list(result.scalars().all())

    async def search(
        self,
        device_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[Reading]:
        """Newest-first listing with optional filters."""
        query = select(Reading)
        if device_id is not None:
            query = query.where(Reading.device_id == device_id)
        if start is not None:
            query = query.where(Reading.recorded_at >= start)
        if end is not None:
            query = query.where(Reading.recorded_at <= end)

        result = await self.session.execute(
            query.order_by(desc(Reading.recorded_at), desc(Reading.id)).limit(limit)
        )
        return list(result.scalars().all())

    async def latest_with_battery(self) -> Reading | None:
        """Most recent reading carrying battery telemetry, from any device."""
        result = await self.session.execute(
            select(Reading)
            .where(Reading.battery_voltage.is_not(None))
            .order_by(desc(Reading.recorded_at), desc(Reading.id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def battery_history(
        self,
        since: datetime,
        limit: int = 100,
        device_id: int | None = None,
    ) -> list[Reading]:
        """Newest-first readings that carry battery telemetry."""
        query = (
            select(Reading)
            .where(Reading.battery_voltage.is_not(None))
            .where(Reading.recorded_at >= since)
        )
        if device_id is not None:
            query = query.where(Reading.device_id == device_id)

        result = await self.session.execute(
            query.order_by(desc(Reading.recorded_at), desc(Reading.id)).limit(limit)
        )
        return list(result.scalars().all())

    async def aggregate_for(self, device_id: int | None, since: datetime) -> dict:
        """
        Count/avg/min/max per numeric field since ``since``.

        SQL aggregates skip NULLs, so a device without a weight sensor does
        not drag the weight average of other devices down.
        """
        columns = [func.count(Reading.id).label("count")]
        for field in NUMERIC_FIELDS:
            column = getattr(Reading, field)
            columns += [
                func.count(column).label(f"{field}_count"),
                func.avg(column).label(f"{field}_avg"),
                func.min(column).label(f"{field}_min"),
                func.max(column).label(f"{field}_max"),
            ]

        query = select(*columns).where(Reading.recorded_at >= since)
        if device_id is not None:
            query = query.where(Reading.device_id == device_id)

        row = (await self.session.execute(query)).one()._mapping

        stats = {"count": row["count"]}
        for field in NUMERIC_FIELDS:
            avg = row[f"{field}_avg"]
            stats[field] = {
                "count": row[f"{field}_count"],
                "avg": float(avg) if avg is not None else None,
                "min": row[f"{field}_min"],
                "max": row[f"{field}_max"],
            }
        return stats
