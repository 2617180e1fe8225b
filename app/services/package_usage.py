"""
Package Usage Service - Monthly allowances per SEO package.

Counters live on the dealership row. A package change resets them; an
expired billing period is archived to monthly_usage and reset.
"""

from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Dealership, MonthlyUsage, SEORequest
from app.exceptions import NoActivePackageError, UsageLimitExceededError
from app.models.api import PackageType, TaskType
from app.models.domain import PackageLimits, UsageSnapshot
from app.observability.logging import get_logger
from app.services.task_types import COMPLETION_FIELDS, USAGE_FIELDS

logger = get_logger(__name__)


PACKAGE_LIMITS: dict[PackageType, PackageLimits] = {
    PackageType.SILVER: PackageLimits(PackageType.SILVER, pages=3, blogs=4, gbp_posts=8, improvements=8),
    PackageType.GOLD: PackageLimits(PackageType.GOLD, pages=6, blogs=8, gbp_posts=16, improvements=10),
    PackageType.PLATINUM: PackageLimits(
        PackageType.PLATINUM, pages=9, blogs=12, gbp_posts=20, improvements=20
    ),
}

# Deliverables a package-level request needs before it counts as completed
REQUEST_REQUIREMENTS: dict[PackageType, dict[TaskType, int]] = {
    PackageType.SILVER: {TaskType.PAGE: 1, TaskType.BLOG: 2, TaskType.GBP_POST: 4},
    PackageType.GOLD: {TaskType.PAGE: 2, TaskType.BLOG: 4, TaskType.GBP_POST: 8},
    PackageType.PLATINUM: {TaskType.PAGE: 4, TaskType.BLOG: 8, TaskType.GBP_POST: 16},
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


def billing_period_for(moment: datetime) -> tuple[datetime, datetime]:
    """Calendar-month period containing `moment` as [start, end)."""
    start = datetime(moment.year, moment.month, 1, tzinfo=UTC)
    if moment.month == 12:
        end = datetime(moment.year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(moment.year, moment.month + 1, 1, tzinfo=UTC)
    return start, end


def get_package_limits(package_type: PackageType | str | None) -> PackageLimits | None:
    if package_type is None:
        return None
    return PACKAGE_LIMITS.get(PackageType(package_type))


def is_package_complete(request: SEORequest) -> bool:
    """
    True when a request has met its package's deliverable requirements.

    Requests without a package type are single-task and complete on delivery.
    Improvements never gate completion.
    """
    if request.package_type is None:
        return True
    requirements = REQUEST_REQUIREMENTS.get(PackageType(request.package_type))
    if requirements is None:
        return False
    return all(
        (getattr(request, COMPLETION_FIELDS[task_type]) or 0) >= required
        for task_type, required in requirements.items()
    )


def _reset_counters(dealership: Dealership) -> None:
    for field in USAGE_FIELDS.values():
        setattr(dealership, field, 0)


class PackageUsageService:
    """Tracks a dealership's deliverable usage against its package."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def change_package(
        self, dealership: Dealership, package_type: PackageType, now: datetime | None = None
    ) -> bool:
        """
        Set the dealership's package. Returns True when the package changed.

        Changing the package resets all counters and starts a fresh period.
        """
        if dealership.active_package_type == package_type.value:
            return False

        previous = dealership.active_package_type
        dealership.active_package_type = package_type.value
        _reset_counters(dealership)
        start, end = billing_period_for(now or _utc_now())
        dealership.current_billing_period_start = start
        dealership.current_billing_period_end = end
        await self.session.flush()

        logger.info(
            "package_changed",
            dealership_id=dealership.id,
            previous_package=previous,
            package=package_type.value,
        )
        return True

    async def ensure_billing_period(
        self, dealership: Dealership, now: datetime | None = None
    ) -> bool:
        """
        Roll the billing period forward when it has ended.

        Returns True when a rollover happened.
        """
        now = now or _utc_now()
        if dealership.current_billing_period_end is None:
            start, end = billing_period_for(now)
            dealership.current_billing_period_start = start
            dealership.current_billing_period_end = end
            return False

        if now < dealership.current_billing_period_end:
            return False

        period_start = dealership.current_billing_period_start or dealership.current_billing_period_end
        self.session.add(
            MonthlyUsage(
                dealership_id=dealership.id,
                year=period_start.year,
                month=period_start.month,
                package_type=dealership.active_package_type,
                pages_used=dealership.pages_used_this_period,
                blogs_used=dealership.blogs_used_this_period,
                gbp_posts_used=dealership.gbp_posts_used_this_period,
                improvements_used=dealership.improvements_used_this_period,
            )
        )
        _reset_counters(dealership)
        start, end = billing_period_for(now)
        dealership.current_billing_period_start = start
        dealership.current_billing_period_end = end
        await self.session.flush()

        logger.info(
            "billing_period_rolled_over",
            dealership_id=dealership.id,
            archived_year=period_start.year,
            archived_month=period_start.month,
        )
        return True

    async def increment_usage(
        self, dealership: Dealership, task_type: TaskType, quantity: int = 1
    ) -> int:
        """
        Count delivered work against the package. Returns the new usage.

        Raises:
            NoActivePackageError: the dealership has no package
            UsageLimitExceededError: the allowance for this period is used up
        """
        limits = get_package_limits(dealership.active_package_type)
        if limits is None:
            raise NoActivePackageError(dealership.id)

        await self.ensure_billing_period(dealership)

        field = USAGE_FIELDS[task_type]
        used = getattr(dealership, field) or 0
        limit = limits.limit_for(task_type)
        if used + quantity > limit:
            raise UsageLimitExceededError(dealership.id, task_type.value, used, limit)

        setattr(dealership, field, used + quantity)
        await self.session.flush()
        return used + quantity

    def get_package_progress(self, dealership: Dealership) -> list[UsageSnapshot]:
        limits = get_package_limits(dealership.active_package_type)
        return [
            UsageSnapshot(
                task_type=task_type,
                used=getattr(dealership, USAGE_FIELDS[task_type]) or 0,
                limit=limits.limit_for(task_type) if limits else 0,
            )
            for task_type in TaskType
        ]

    async def record_delivery(
        self, dealership_id: str | None, task_type: TaskType, external_id: str
    ) -> bool:
        """
        Count a vendor delivery against the dealership's package.

        Deliveries have already happened, so a missing package or exhausted
        allowance is logged rather than raised. Returns True when counted.
        """
        if not dealership_id:
            return False
        dealership = await self.session.get(Dealership, dealership_id)
        if dealership is None:
            return False
        try:
            await self.increment_usage(dealership, task_type)
        except (NoActivePackageError, UsageLimitExceededError) as exc:
            logger.warning(
                "usage_not_counted",
                dealership_id=dealership_id,
                external_id=external_id,
                reason=str(exc),
            )
            return False
        return True
