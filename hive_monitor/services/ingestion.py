"""
Ingestion Service - authenticated reading submission from edge devices

Every accepted reading is answered with the live threshold policy, so LVD
boards pick up new hysteresis values without a separate round trip.
Duplicate submissions (device retries after a lost response) are stored
twice; devices send no idempotency key to dedupe on.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from hive_monitor.core.errors import HiveMonitorError, InvalidPayload, Unauthorized
from hive_monitor.models.reading import Reading
from hive_monitor.services.policy import PolicySnapshot, ThresholdPolicyStore
from hive_monitor.services.readings import ReadingStore
from hive_monitor.services.registry import DeviceRegistry

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    reading: Reading
    policy: PolicySnapshot

    def to_dict(self) -> dict:
        body = {"status": "ok", "id": self.reading.id}
        if self.reading.battery_percent is not None:
            body["battery_percent"] = self.reading.battery_percent
        body.update(self.policy.to_wire())
        return body


class IngestionService:
    """Authenticate, validate and persist readings."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.registry = DeviceRegistry(session)
        self.readings = ReadingStore(session)
        self.policy = ThresholdPolicyStore(session)

    async def submit(
        self,
        credential: str | None,
        fields: dict,
        recorded_at: datetime | None = None,
    ) -> IngestionResult:
        """
        Accept one reading.

        Raises:
            Unauthorized: credential does not resolve to an active device
            InvalidPayload: temperature missing or body malformed
            OutOfRange: a field failed its plausibility check (nothing stored)
        """
        device = await self.registry.resolve_by_credential(credential)
        if device is None:
            logger.warning("🚫 Rejected reading: unknown credential")
            raise Unauthorized("Invalid API key", field="credential")

        try:
            if fields.get("temperature") is None:
                raise InvalidPayload("Temperature required", field="temperature")

            reading = await self.readings.append(device.id, fields, recorded_at)
        except HiveMonitorError as e:
            logger.warning(f"🚫 Rejected reading from device {device.id}: {e.kind} ({e.message})")
            raise

        logger.info(
            f"📥 Reading from device {device.id} ({device.name}): "
            f"temp={reading.temperature}°C weight={reading.weight} "
            f"battery={reading.battery_voltage}V"
        )

        policy = await self.policy.get()
        return IngestionResult(reading=reading, policy=policy)
