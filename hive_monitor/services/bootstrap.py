"""
Bootstrap - seed default operator, devices and LVD policy on first start
"""

import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hive_monitor.core.config import settings
from hive_monitor.models.device import Device
from hive_monitor.services.auth import OperatorService
from hive_monitor.services.policy import ThresholdPolicyStore
from hive_monitor.services.registry import DeviceRegistry

logger = logging.getLogger(__name__)


async def seed(session: AsyncSession) -> None:
    """Idempotent: each step only runs when its table is empty."""
    await OperatorService(session).ensure_admin(settings.admin_username, settings.admin_password)

    device_count = await session.scalar(select(func.count(Device.id)))
    if not device_count:
        registry = DeviceRegistry(session)
        for name in settings.seed_device_names:
            device = await registry.create(name)
            logger.info(f"✓ Device: {device.name}")

    await ThresholdPolicyStore(session).ensure_exists()


async def run_bootstrap(session_maker: async_sessionmaker) -> None:
    logger.info("📦 Initializing database...")
    async with session_maker() as session:
        await seed(session)
    logger.info("✅ Database ready!")
