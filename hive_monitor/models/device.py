"""
Device model - one physical sensor/relay node (hive scale, LVD board)
"""

from datetime import datetime
from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from hive_monitor.core.database import Base, utcnow


class Device(Base):
    """Edge device identified by an opaque credential."""

    __tablename__ = "devices"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))

    # Opaque API key sent with every reading
    credential: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    # Soft delete - readings keep referencing inactive devices
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Device {self.id} ({self.name})>"
