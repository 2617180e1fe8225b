"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Wire format is camelCase to match SEOWorks payloads and the dashboard client;
Python attributes stay snake_case.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class PackageType(str, Enum):
    """SEO package tier."""

    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


class RequestStatus(str, Enum):
    """Lifecycle of an SEO request."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TaskType(str, Enum):
    """Deliverable categories counted against a package."""

    PAGE = "page"
    BLOG = "blog"
    GBP_POST = "gbp_post"
    IMPROVEMENT = "improvement"


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    AGENCY_ADMIN = "AGENCY_ADMIN"
    ADMIN = "ADMIN"
    USER = "USER"


class AccessLevel(str, Enum):
    """Per-dealership grant level, ordered READ < WRITE < ADMIN."""

    READ = "READ"
    WRITE = "WRITE"
    ADMIN = "ADMIN"


class PropertySource(str, Enum):
    """Which fallback layer produced a property resolution."""

    DEALERSHIP_MAPPING = "dealership-mapping"
    USER_CONNECTION = "user-connection"
    NONE = "none"


class WebhookEventType(str, Enum):
    """SEOWorks webhook event types the service acts on."""

    TASK_COMPLETED = "task.completed"
    TASK_UPDATED = "task.updated"
    TASK_CANCELLED = "task.cancelled"


class CamelModel(BaseModel):
    """Base model serialising to camelCase while accepting either casing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# SEOWorks Webhook Models
# ============================================================================


class SEOWorksDeliverable(CamelModel):
    """One deliverable attached to a vendor task."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str
    title: str
    url: str | None = None
    description: str | None = None


class SEOWorksTaskData(CamelModel):
    """The `data` object of a webhook delivery."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    external_id: str = Field(..., min_length=1, max_length=255)
    client_id: str | None = Field(None, max_length=255)
    client_email: str | None = Field(None, max_length=255)
    task_type: str = Field(..., min_length=1, max_length=100)
    status: str = Field(..., max_length=50)
    completion_date: str | None = None
    notes: str | None = None
    deliverables: list[SEOWorksDeliverable] = Field(default_factory=list)

    @field_validator("client_email")
    @classmethod
    def normalize_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None


class SEOWorksWebhookPayload(CamelModel):
    """POST /api/seoworks/webhook request body."""

    # Unknown vendor fields are kept so the stored raw payload is complete
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    event_type: str = Field(..., min_length=1, max_length=100)
    timestamp: str | None = None
    data: SEOWorksTaskData


class WebhookResponse(CamelModel):
    """POST /api/seoworks/webhook response (None fields are omitted)."""

    success: bool = True
    message: str
    event_type: str | None = None
    request_id: str | None = None
    status: str | None = None
    seoworks_task_id: str | None = None
    orphaned_task_id: str | None = None


class WebhookStatusResponse(CamelModel):
    """GET /api/seoworks/webhook connectivity check."""

    status: str = "ok"
    message: str = "SEOWorks webhook endpoint is active"
    timestamp: str


# ============================================================================
# Orphaned Task Models
# ============================================================================


class ProcessOrphanedTasksRequest(CamelModel):
    """POST /api/seoworks/process-orphaned-tasks request body."""

    user_id: str | None = None
    user_email: str | None = None
    external_id: str | None = None

    @model_validator(mode="after")
    def require_selector(self) -> "ProcessOrphanedTasksRequest":
        if not (self.user_id or self.user_email or self.external_id):
            raise ValueError("One of userId, userEmail or externalId is required")
        return self


class ProcessOrphanedTasksResponse(CamelModel):
    success: bool = True
    user_id: str | None = None
    found: int = 0
    processed: int = 0
    created: int = 0
    skipped: int = 0
    message: str


class OrphanedTaskItem(CamelModel):
    """Single orphaned task in list response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    external_id: str
    client_id: str | None
    client_email: str | None
    event_type: str
    task_type: str
    status: str
    completion_date: datetime | None
    processed: bool
    linked_request_id: str | None
    notes: str | None
    created_at: datetime


class OrphanedTaskSummaryItem(CamelModel):
    processed: bool
    event_type: str
    task_type: str
    count: int


class OrphanedTaskListResponse(CamelModel):
    """GET /api/seoworks/orphaned-tasks response."""

    tasks: list[OrphanedTaskItem]
    summary: list[OrphanedTaskSummaryItem]
    total: int


# ============================================================================
# Dealership Administration Models
# ============================================================================


class DealershipCreateRequest(CamelModel):
    """POST /api/admin/dealerships request body."""

    name: str = Field(..., min_length=1, max_length=255)
    agency_id: str = Field(..., min_length=1, max_length=64)
    id: str | None = Field(None, min_length=1, max_length=64)
    website: str | None = Field(None, max_length=500)
    address: str | None = Field(None, max_length=255)
    city: str | None = Field(None, max_length=100)
    state: str | None = Field(None, min_length=2, max_length=2)
    zip_code: str | None = Field(None, max_length=20)
    phone: str | None = Field(None, max_length=50)
    active_package_type: PackageType = PackageType.GOLD
    client_id: str | None = Field(None, max_length=255)
    main_brand: str | None = None
    other_brand: str | None = None
    contact_name: str | None = None
    contact_title: str | None = None
    email: str | None = Field(None, max_length=255)
    billing_email: str | None = Field(None, max_length=255)
    site_access_notes: str | None = None
    target_vehicle_models: list[str] = Field(default_factory=list)
    target_cities: list[str] = Field(default_factory=list)
    target_dealers: list[str] = Field(default_factory=list)
    notes: str | None = None

    @field_validator("email", "billing_email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email address")
        return v.strip().lower()

    @field_validator("state")
    @classmethod
    def uppercase_state(cls, v: str | None) -> str | None:
        return v.upper() if v else v


class ConnectionProvisioningReport(CamelModel):
    success: bool
    ga4_created: bool
    search_console_created: bool
    errors: list[str] = Field(default_factory=list)
    ga4_property_id: str | None = None
    search_console_url: str | None = None


class DealershipResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    agency_id: str
    website: str | None
    client_id: str | None
    active_package_type: PackageType | None
    created_at: datetime


class DealershipCreateResponse(CamelModel):
    """POST /api/admin/dealerships response."""

    success: bool = True
    dealership: DealershipResponse
    connections: ConnectionProvisioningReport


class DealershipListItem(CamelModel):
    id: str
    name: str
    website: str | None
    agency_id: str
    agency_name: str | None
    client_id: str | None
    active_package_type: PackageType | None
    user_count: int
    created_at: datetime


class DealershipListResponse(CamelModel):
    dealerships: list[DealershipListItem]
    total: int


class PackageUpdateRequest(CamelModel):
    """PUT /api/admin/dealerships/{id}/package request body."""

    package_type: PackageType


class PackageUsageItem(CamelModel):
    task_type: TaskType
    used: int
    limit: int
    remaining: int


class PackageResponse(CamelModel):
    """GET|PUT /api/admin/dealerships/{id}/package response."""

    dealership_id: str
    package_type: PackageType | None
    billing_period_start: datetime | None
    billing_period_end: datetime | None
    usage: list[PackageUsageItem]


# ============================================================================
# Onboarding / Focus Request Models
# ============================================================================


class OnboardingRequest(CamelModel):
    """POST /api/seoworks/complete-onboarding request body."""

    business_name: str = Field(..., min_length=1, max_length=255)
    package: PackageType
    main_brand: str | None = None
    other_brand: str | None = None
    address: str | None = None
    city: str = Field(..., min_length=1, max_length=100)
    state: str | None = None
    zip_code: str | None = None
    contact_name: str | None = None
    contact_title: str | None = None
    email: str = Field(..., min_length=3, max_length=255)
    phone: str | None = None
    website_url: str | None = None
    billing_email: str | None = None
    site_access: str | None = None
    target_vehicle_models: list[str] = Field(default_factory=list)
    target_cities: list[str] = Field(default_factory=list)
    target_dealers: list[str] = Field(default_factory=list)


class OnboardingResponse(CamelModel):
    success: bool = True
    client_id: str
    orphaned_tasks_processed: int = 0
    orphaned_tasks_created: int = 0


class FocusRequest(CamelModel):
    """POST /api/seoworks/send-focus-request request body."""

    request_id: str = Field(..., min_length=1)


class FocusRequestResponse(CamelModel):
    success: bool = True
    request_id: str
    seoworks_task_id: str | None


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(CamelModel):
    status: str
    database: str
    timestamp: str
    version: str
