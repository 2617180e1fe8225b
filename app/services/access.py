"""
Dealership access checks.

A user reaches a dealership through their role, their current dealership,
or an explicit, active grant at or above the level the caller needs.
"""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Dealership, User, UserDealershipAccess
from app.models.api import AccessLevel, UserRole
from app.observability.logging import get_logger

logger = get_logger(__name__)

ACCESS_LEVEL_RANK = {AccessLevel.READ: 1, AccessLevel.WRITE: 2, AccessLevel.ADMIN: 3}


def level_satisfies(granted: AccessLevel | str, required: AccessLevel | str) -> bool:
    return ACCESS_LEVEL_RANK[AccessLevel(granted)] >= ACCESS_LEVEL_RANK[AccessLevel(required)]


async def has_dealership_access(
    session: AsyncSession,
    user: User,
    dealership_id: str,
    required_level: AccessLevel = AccessLevel.READ,
    now: datetime | None = None,
) -> bool:
    if user.role == UserRole.SUPER_ADMIN.value:
        return True

    if user.dealership_id == dealership_id:
        return True

    if user.role == UserRole.AGENCY_ADMIN.value and user.agency_id:
        result = await session.execute(
            select(Dealership.agency_id).where(Dealership.id == dealership_id)
        )
        if result.scalar_one_or_none() == user.agency_id:
            return True

    result = await session.execute(
        select(UserDealershipAccess).where(
            UserDealershipAccess.user_id == user.id,
            UserDealershipAccess.dealership_id == dealership_id,
            UserDealershipAccess.is_active.is_(True),
        )
    )
    grant = result.scalar_one_or_none()
    if grant is None:
        return False

    now = now or datetime.now(UTC)
    if grant.expires_at is not None and grant.expires_at <= now:
        logger.debug(
            "dealership_access_grant_expired", user_id=user.id, dealership_id=dealership_id
        )
        return False

    return level_satisfies(grant.access_level, required_level)
