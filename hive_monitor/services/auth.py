"""
Operator authentication - login, token verification, password changes
"""

import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hive_monitor.core.errors import InvalidPayload, NotFound, Unauthorized
from hive_monitor.core.security import create_token, decode_token, hash_password, verify_password
from hive_monitor.models.operator import Operator

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 4


class OperatorService:
    """Dashboard operator accounts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def login(self, username: str, password: str) -> tuple[str, Operator]:
        """Check credentials and issue a token."""
        if not username or not password:
            raise InvalidPayload("Username and password required")

        result = await self.session.execute(
            select(Operator).where(Operator.username == username)
        )
        operator = result.scalar_one_or_none()

        if operator is None or not verify_password(password, operator.password_hash):
            logger.warning(f"🚫 Failed login for '{username}'")
            raise Unauthorized("Invalid credentials")

        return create_token(operator.id, operator.username), operator

    async def from_token(self, token: str | None) -> Operator:
        """Resolve a bearer token to its operator."""
        if not token:
            raise Unauthorized("Access denied")

        claims = decode_token(token)
        operator_id = claims.get("sub")
        if not isinstance(operator_id, int):
            raise Unauthorized("Invalid token")

        operator = await self.session.get(Operator, operator_id)
        if operator is None:
            raise Unauthorized("Invalid token")
        return operator

    async def change_password(self, operator: Operator, current: str, new: str) -> None:
        if not current or not new:
            raise InvalidPayload("Current and new password required")
        if len(new) < MIN_PASSWORD_LENGTH:
            raise InvalidPayload(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                field="new_password",
            )
        if not verify_password(current, operator.password_hash):
            raise Unauthorized("Current password is incorrect")

        operator.password_hash = hash_password(new)
        await self.session.commit()
        logger.info(f"🔐 Password changed for '{operator.username}'")

    async def get(self, operator_id: int) -> Operator:
        operator = await self.session.get(Operator, operator_id)
        if operator is None:
            raise NotFound("User not found")
        return operator

    async def ensure_admin(self, username: str, password: str) -> Operator | None:
        """Create the first operator when none exist."""
        count = await self.session.scalar(select(func.count(Operator.id)))
        if count:
            return None

        operator = Operator(username=username, password_hash=hash_password(password))
        self.session.add(operator)
        await self.session.commit()
        logger.info(f"👤 Created operator '{username}'")
        return operator
