"""
Export Service - bulk CSV/JSON download of readings
"""

import csv
import io
from datetime import date, datetime, timedelta

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hive_monitor.core.database import utcnow
from hive_monitor.models.device import Device
from hive_monitor.models.reading import Reading
from hive_monitor.services.readings import reading_to_dict

CSV_COLUMNS = [
    ("device_id", "device_id"),
    ("device_name", "device_name"),
    ("temperature_c", "temperature"),
    ("secondary_temperature_c", "secondary_temperature"),
    ("humidity_pct", "humidity"),
    ("weight_kg", "weight"),
    ("battery_voltage", "battery_voltage"),
    ("battery_percent", "battery_percent"),
    ("relay_connected", "relay_connected"),
    ("recorded_at", "recorded_at"),
]


def export_filename(extension: str, today: date | None = None) -> str:
    today = today or utcnow().date()
    return f"hive_export_{today.isoformat()}.{extension}"


class ExportService:
    """Readings joined with device names, oldest first."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def rows(
        self,
        device_id: int | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[dict]:
        query = select(Reading, Device.name).join(Device, Reading.device_id == Device.id)

        if device_id is not None:
            query = query.where(Reading.device_id == device_id)
        if start_date is not None:
            query = query.where(Reading.recorded_at >= datetime.combine(start_date, datetime.min.time()))
        if end_date is not None:
            # end_date covers the whole day
            end = datetime.combine(end_date, datetime.min.time()) + timedelta(days=1)
            query = query.where(Reading.recorded_at < end)

        result = await self.session.execute(query.order_by(Reading.recorded_at, Reading.id))
        return [
            {**reading_to_dict(reading), "device_name": name}
            for reading, name in result.all()
        ]

    async def to_csv(self, **filters) -> str:
        rows = await self.rows(**filters)

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([header for header, _ in CSV_COLUMNS])
        for row in rows:
            writer.writerow([
                "" if row[key] is None else row[key]
                for _, key in CSV_COLUMNS
            ])
        return buffer.getvalue()

    async def to_json(self, **filters) -> dict:
        rows = await self.rows(**filters)
        return {
            "exported_at": utcnow().isoformat(),
            "total_readings": len(rows),
            "readings": rows,
        }

    async def stats(self) -> dict:
        result = await self.session.execute(
            select(
                func.count(Reading.id),
                func.min(Reading.recorded_at),
                func.max(Reading.recorded_at),
                func.count(func.distinct(Reading.device_id)),
            )
        )
        total, first, last, devices = result.one()
        return {
            "total_readings": total,
            "first_reading": first.isoformat() if first else None,
            "last_reading": last.isoformat() if last else None,
            "devices_with_data": devices,
        }
