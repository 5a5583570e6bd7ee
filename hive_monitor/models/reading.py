"""
Reading model - one observation batch from a device
"""

from datetime import datetime
from sqlalchemy import Integer, Float, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from hive_monitor.core.database import Base, utcnow


class Reading(Base):
    """Immutable sensor readings from device."""

    __tablename__ = "readings"
    __table_args__ = (
        Index("ix_readings_device_time", "device_id", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    device_id: Mapped[int] = mapped_column(Integer, ForeignKey("devices.id"), index=True)

    # Sensor data (all optional except temperature at ingestion)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)  # Celsius
    secondary_temperature: Mapped[float | None] = mapped_column(Float, nullable=True)  # Celsius
    humidity: Mapped[float | None] = mapped_column(Float, nullable=True)  # %
    weight: Mapped[float | None] = mapped_column(Float, nullable=True)  # kg
    battery_voltage: Mapped[float | None] = mapped_column(Float, nullable=True)  # V
    battery_percent: Mapped[float | None] = mapped_column(Float, nullable=True)  # %

    # Self-reported LVD relay state (True = load connected)
    relay_connected: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Reading device={self.device_id} temp={self.temperature}C>"
