"""
Threshold Policy Store - the LVD hysteresis parameters

Exactly one policy exists per deployment. Reads go through a short-lived
in-process cache because every ingestion call echoes the policy back to the
device. Updates are read-modify-validate-write inside one transaction, with a
row lock where the database supports it and a version check everywhere.
"""

import logging
import math
import time
from dataclasses import dataclass, asdict
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from hive_monitor.core.config import settings
from hive_monitor.core.database import utcnow
from hive_monitor.core.errors import InvalidPayload, PolicyInvariantViolation, Transient
from hive_monitor.models.policy import POLICY_ROW_ID, ThresholdPolicy

logger = logging.getLogger(__name__)

# Single-cell lithium plausible range (V)
MIN_VOLTAGE = 2.5
MAX_VOLTAGE = 4.2

DEFAULT_DISCONNECT_VOLTAGE = 3.30
DEFAULT_RECONNECT_VOLTAGE = 3.60
DEFAULT_ENABLED = True

POLICY_FIELDS = ("disconnect_voltage", "reconnect_voltage", "enabled")


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of the policy handed to callers."""

    disconnect_voltage: float
    reconnect_voltage: float
    enabled: bool
    version: int = 0
    updated_at: datetime | None = None

    def to_wire(self) -> dict:
        """Fields devices consume."""
        return {
            "disconnect_voltage": self.disconnect_voltage,
            "reconnect_voltage": self.reconnect_voltage,
            "enabled": self.enabled,
        }

    def to_dict(self) -> dict:
        data = asdict(self)
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data


DEFAULT_POLICY = PolicySnapshot(
    disconnect_voltage=DEFAULT_DISCONNECT_VOLTAGE,
    reconnect_voltage=DEFAULT_RECONNECT_VOLTAGE,
    enabled=DEFAULT_ENABLED,
)


def validate_policy(disconnect_voltage: float, reconnect_voltage: float) -> None:
    """Check the combined policy: both voltages in range and disconnect < reconnect."""
    for field, value in (("disconnect_voltage", disconnect_voltage),
                         ("reconnect_voltage", reconnect_voltage)):
        if not math.isfinite(value) or not (MIN_VOLTAGE <= value <= MAX_VOLTAGE):
            raise PolicyInvariantViolation(
                f"{field} must be between {MIN_VOLTAGE}V and {MAX_VOLTAGE}V",
                field=field,
            )

    if not disconnect_voltage < reconnect_voltage:
        raise PolicyInvariantViolation(
            "disconnect_voltage must be lower than reconnect_voltage",
            field="disconnect_voltage",
        )


def _snapshot(row: ThresholdPolicy) -> PolicySnapshot:
    return PolicySnapshot(
        disconnect_voltage=row.disconnect_voltage,
        reconnect_voltage=row.reconnect_voltage,
        enabled=row.enabled,
        version=row.version,
        updated_at=row.updated_at,
    )


class PolicyCache:
    """Process-wide cache of the current policy with a TTL."""

    def __init__(self):
        self._value: PolicySnapshot | None = None
        self._expires_at = 0.0

    def get(self) -> PolicySnapshot | None:
        if self._value is not None and time.monotonic() < self._expires_at:
            return self._value
        return None

    def set(self, value: PolicySnapshot, ttl: float) -> None:
        self._value = value
        self._expires_at = time.monotonic() + ttl

    def clear(self) -> None:
        self._value = None
        self._expires_at = 0.0


policy_cache = PolicyCache()


def _coerce_changes(changes: dict) -> dict:
    unknown = set(changes) - set(POLICY_FIELDS)
    if unknown:
        raise InvalidPayload(f"Unknown policy fields: {', '.join(sorted(unknown))}")

    coerced = {}
    for field, value in changes.items():
        if value is None:
            continue
        if field == "enabled":
            if not isinstance(value, bool):
                raise InvalidPayload("enabled must be a boolean", field=field)
            coerced[field] = value
        else:
            if isinstance(value, bool):
                raise InvalidPayload(f"{field} must be a number", field=field)
            try:
                coerced[field] = float(value)
            except (TypeError, ValueError):
                raise InvalidPayload(f"{field} must be a number", field=field)

    if not coerced:
        raise InvalidPayload("No settings to update")
    return coerced


class ThresholdPolicyStore:
    """Get and update the singleton threshold policy."""

    def __init__(self, session: AsyncSession, cache: PolicyCache = policy_cache):
        self.session = session
        self.cache = cache

    async def get(self) -> PolicySnapshot:
        """Current policy; defaults if it was never stored."""
        cached = self.cache.get()
        if cached is not None:
            return cached

        row = await self.session.get(ThresholdPolicy, POLICY_ROW_ID)
        snapshot = _snapshot(row) if row is not None else DEFAULT_POLICY
        self.cache.set(snapshot, settings.policy_cache_seconds)
        return snapshot

    async def ensure_exists(self) -> PolicySnapshot:
        """Store the default policy row if missing (bootstrap)."""
        row = await self.session.get(ThresholdPolicy, POLICY_ROW_ID)
        if row is None:
            row = ThresholdPolicy(
                id=POLICY_ROW_ID,
                disconnect_voltage=DEFAULT_DISCONNECT_VOLTAGE,
                reconnect_voltage=DEFAULT_RECONNECT_VOLTAGE,
                enabled=DEFAULT_ENABLED,
                updated_at=utcnow(),
            )
            self.session.add(row)
            await self.session.commit()
            logger.info("⚡ Stored default LVD policy")
        return _snapshot(row)

    async def update(self, changes: dict) -> PolicySnapshot:
        """Merge a partial update onto the stored policy.

        The merged result is validated as a whole; nothing is written when it
        is invalid.
        """
        changes = _coerce_changes(changes)

        try:
            result = await self.session.execute(
                select(ThresholdPolicy)
                .where(ThresholdPolicy.id == POLICY_ROW_ID)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()

            if row is None:
                row = ThresholdPolicy(
                    id=POLICY_ROW_ID,
                    disconnect_voltage=DEFAULT_DISCONNECT_VOLTAGE,
                    reconnect_voltage=DEFAULT_RECONNECT_VOLTAGE,
                    enabled=DEFAULT_ENABLED,
                )
                self.session.add(row)

            merged = {
                "disconnect_voltage": row.disconnect_voltage,
                "reconnect_voltage": row.reconnect_voltage,
                "enabled": row.enabled,
                **changes,
            }
            validate_policy(merged["disconnect_voltage"], merged["reconnect_voltage"])

            row.disconnect_voltage = merged["disconnect_voltage"]
            row.reconnect_voltage = merged["reconnect_voltage"]
            row.enabled = merged["enabled"]
            row.updated_at = utcnow()

            await self.session.commit()

        except PolicyInvariantViolation:
            await self.session.rollback()
            raise
        except (StaleDataError, IntegrityError) as e:
            await self.session.rollback()
            logger.warning(f"Concurrent policy update lost: {e}")
            raise Transient("Policy was changed concurrently, retry")

        snapshot = _snapshot(row)
        self.cache.set(snapshot, settings.policy_cache_seconds)

        logger.info(
            f"⚡ LVD policy updated: disconnect={snapshot.disconnect_voltage}V "
            f"reconnect={snapshot.reconnect_voltage}V enabled={snapshot.enabled} "
            f"(v{snapshot.version})"
        )
        return snapshot
