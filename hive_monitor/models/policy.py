"""
Threshold policy model - singleton row with LVD hysteresis parameters
"""

from datetime import datetime
from sqlalchemy import Integer, Float, Boolean, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hive_monitor.core.database import Base, utcnow

POLICY_ROW_ID = 1


class ThresholdPolicy(Base):
    """Disconnect/reconnect voltages fetched by LVD devices."""

    __tablename__ = "threshold_policy"
    __table_args__ = (
        CheckConstraint("disconnect_voltage < reconnect_voltage", name="ck_policy_hysteresis"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, default=POLICY_ROW_ID)
    disconnect_voltage: Mapped[float] = mapped_column(Float)
    reconnect_voltage: Mapped[float] = mapped_column(Float)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Bumped on every update; concurrent writers on a stale version fail
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ThresholdPolicy v{self.version} "
            f"{self.disconnect_voltage}V/{self.reconnect_voltage}V enabled={self.enabled}>"
        )
