"""
Device Registry - maps opaque credentials to devices
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hive_monitor.core.errors import InvalidPayload, NotFound, Transient
from hive_monitor.core.security import generate_credential
from hive_monitor.models.device import Device

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 50
MAX_CREDENTIAL_ATTEMPTS = 10


def clean_name(name: str | None) -> str:
    """Validate and trim a device display name."""
    if name is None or not name.strip():
        raise InvalidPayload("Name is required", field="name")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidPayload(f"Name must be at most {MAX_NAME_LENGTH} characters", field="name")
    return name


class DeviceRegistry:
    """Create, resolve and maintain devices."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_by_credential(self, credential: str | None) -> Device | None:
        """Return the active device owning this credential, or None."""
        if not credential:
            return None
        result = await self.session.execute(
            select(Device).where(Device.credential == credential, Device.is_active == True)
        )
        return result.scalar_one_or_none()

    async def get(self, device_id: int) -> Device:
        device = await self.session.get(Device, device_id)
        if device is None:
            raise NotFound(f"Device {device_id} not found")
        return device

    async def list_active(self) -> list[Device]:
        result = await self.session.execute(
            select(Device).where(Device.is_active == True).order_by(Device.id)
        )
        return list(result.scalars().all())

    async def _unique_credential(self, name: str) -> str:
        """Generate a credential not used by any device (active or not)."""
        for _ in range(MAX_CREDENTIAL_ATTEMPTS):
            credential = generate_credential(name)
            existing = await self.session.execute(
                select(Device.id).where(Device.credential == credential)
            )
            if existing.scalar_one_or_none() is None:
                return credential
        raise Transient("Could not allocate a unique credential, retry")

    async def create(self, name: str) -> Device:
        """Register a new device with a fresh credential."""
        name = clean_name(name)
        device = Device(name=name, credential=await self._unique_credential(name), is_active=True)
        self.session.add(device)
        await self.session.commit()
        logger.info(f"🆕 Created device {device.id} ({device.name})")
        return device

    async def regenerate_credential(self, device_id: int) -> str:
        """Swap the credential in a single UPDATE; the old key stops working at commit."""
        device = await self.get(device_id)
        credential = await self._unique_credential(device.name)

        await self.session.execute(
            update(Device).where(Device.id == device_id).values(credential=credential)
        )
        await self.session.commit()
        await self.session.refresh(device)

        logger.info(f"🔑 Regenerated credential for device {device_id}")
        return credential

    async def rename(self, device_id: int, name: str) -> Device:
        name = clean_name(name)
        device = await self.get(device_id)
        device.name = name
        await self.session.commit()
        return device

    async def deactivate(self, device_id: int) -> Device:
        """Soft-delete: the device keeps its readings but can no longer submit."""
        device = await self.get(device_id)
        device.is_active = False
        await self.session.commit()
        logger.info(f"🗑️ Deactivated device {device_id}")
        return device
