"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime

from app.models.api import PackageType, PropertySource, TaskType


@dataclass(frozen=True)
class DealershipPropertyMapping:
    """Static assignment of a dealership to its GA4 property and Search Console site."""

    dealership_id: str
    dealership_name: str
    ga4_property_id: str | None
    search_console_url: str | None
    has_access: bool
    notes: str | None = None

    def __post_init__(self) -> None:
        if not self.dealership_id:
            raise ValueError("dealership_id cannot be empty")
        if self.ga4_property_id is not None and not self.ga4_property_id.isdigit():
            raise ValueError(f"GA4 property ID must be numeric: {self.ga4_property_id}")

    @property
    def has_ga4_access(self) -> bool:
        return self.has_access and self.ga4_property_id is not None


@dataclass(frozen=True)
class PropertyResolution:
    """Outcome of resolving which GA4 property or Search Console site to query."""

    source: PropertySource
    has_access: bool
    property_id: str | None = None
    site_url: str | None = None

    @classmethod
    def none(cls) -> "PropertyResolution":
        return cls(source=PropertySource.NONE, has_access=False)


@dataclass(frozen=True)
class AvailableProperty:
    """A property or site a user can report on, with where it came from."""

    kind: str  # "ga4" or "search_console"
    identifier: str
    name: str | None
    source: PropertySource
    dealership_id: str | None = None


@dataclass(frozen=True)
class ConnectionProvisioningResult:
    """Report from creating connection stubs for a new dealership."""

    success: bool
    ga4_created: bool
    search_console_created: bool
    errors: tuple[str, ...] = ()
    ga4_property_id: str | None = None
    search_console_url: str | None = None


@dataclass(frozen=True)
class ReconciliationResult:
    """Counts from one orphaned-task reconciliation run."""

    found: int
    processed: int
    created: int
    skipped: int
    failed: int = 0
    linked_request_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class WebhookOutcome:
    """How a webhook delivery was handled."""

    event_type: str
    external_id: str
    request_id: str | None = None
    orphaned_task_id: str | None = None

    @property
    def orphaned(self) -> bool:
        return self.orphaned_task_id is not None


@dataclass(frozen=True)
class PackageLimits:
    """Monthly allowance for a package tier."""

    package_type: PackageType
    pages: int
    blogs: int
    gbp_posts: int
    improvements: int

    def limit_for(self, task_type: TaskType) -> int:
        return {
            TaskType.PAGE: self.pages,
            TaskType.BLOG: self.blogs,
            TaskType.GBP_POST: self.gbp_posts,
            TaskType.IMPROVEMENT: self.improvements,
        }[task_type]

    @property
    def total(self) -> int:
        return self.pages + self.blogs + self.gbp_posts + self.improvements


@dataclass(frozen=True)
class UsageSnapshot:
    """Used vs. allowed counts for one task type in the current period."""

    task_type: TaskType
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


@dataclass(frozen=True)
class OnboardingResult:
    client_id: str
    reconciliation: ReconciliationResult | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class TaskOwner:
    """Plain snapshot of the user a vendor task is attributed to."""

    user_id: str
    email: str
    agency_id: str | None
    dealership_id: str | None
    dealership_client_id: str | None = None
