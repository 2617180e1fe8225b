"""
SEO Hub ORM models.

Agencies own dealerships and users; dealerships carry package usage and
GA4 / Search Console connections; SEOWorks deliveries land on requests or,
when unmatched, in orphaned_tasks. JSONB is kept for raw vendor payloads and
free-form dealership settings.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.models.api import AccessLevel, RequestStatus, UserRole


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid4())


class Agency(Base):
    """Marketing agency that owns dealerships and users."""

    __tablename__ = "agencies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return f"<Agency(id={self.id}, name={self.name})>"


class Dealership(Base):
    """
    ORM model for dealerships table.

    A dealership is a tenant under one agency. Usage counters track
    deliverables against the active package for the current billing period.
    """

    __tablename__ = "dealerships"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    agency_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False
    )

    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(2), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # SEOWorks client identifier
    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    # Package and usage
    active_package_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    pages_used_this_period: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    blogs_used_this_period: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gbp_posts_used_this_period: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    improvements_used_this_period: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    current_billing_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_billing_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Contact, brands and target markets
    settings: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("pages_used_this_period >= 0", name="ck_pages_used_non_negative"),
        CheckConstraint("blogs_used_this_period >= 0", name="ck_blogs_used_non_negative"),
        CheckConstraint("gbp_posts_used_this_period >= 0", name="ck_gbp_posts_used_non_negative"),
        CheckConstraint(
            "improvements_used_this_period >= 0", name="ck_improvements_used_non_negative"
        ),
        Index("idx_dealerships_agency_id", "agency_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Dealership(id={self.id}, name={self.name}, "
            f"package={self.active_package_type})>"
        )


class User(Base):
    """Dashboard user; belongs to an agency and optionally a current dealership."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER.value)
    agency_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True
    )
    dealership_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("dealerships.id", ondelete="SET NULL"), nullable=True
    )
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('SUPER_ADMIN', 'AGENCY_ADMIN', 'ADMIN', 'USER')", name="ck_user_role"
        ),
        Index("idx_users_agency_id", "agency_id"),
        Index("idx_users_dealership_id", "dealership_id"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class UserDealershipAccess(Base):
    """Explicit per-dealership grant for users outside the dealership's own staff."""

    __tablename__ = "user_dealership_access"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    dealership_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("dealerships.id", ondelete="CASCADE"), nullable=False
    )
    access_level: Mapped[str] = mapped_column(
        String(10), nullable=False, default=AccessLevel.READ.value
    )
    granted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "dealership_id", name="uq_user_dealership_access"),
        CheckConstraint("access_level IN ('READ', 'WRITE', 'ADMIN')", name="ck_access_level"),
    )


class GA4Connection(Base):
    """
    OAuth connection to a GA4 property.

    Rows with a dealership_id are scoped to that dealership; rows without one
    are the user's personal connection.
    """

    __tablename__ = "ga4_connections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    dealership_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("dealerships.id", ondelete="CASCADE"), nullable=True
    )
    property_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    property_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_ga4_connections_user_dealership", "user_id", "dealership_id"),
        Index("idx_ga4_connections_property_id", "property_id"),
    )


class SearchConsoleConnection(Base):
    """OAuth connection to a Search Console site; scoping as for GA4Connection."""

    __tablename__ = "search_console_connections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    dealership_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("dealerships.id", ondelete="CASCADE"), nullable=True
    )
    site_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    site_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_sc_connections_user_dealership", "user_id", "dealership_id"),
        Index("idx_sc_connections_site_url", "site_url"),
    )


class SEORequest(Base):
    """
    ORM model for requests table.

    A unit of SEO work. seoworks_task_id links it to the vendor's task so
    webhooks can find it.
    """

    __tablename__ = "requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    agency_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True
    )
    dealership_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("dealerships.id", ondelete="SET NULL"), nullable=True
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="MEDIUM")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RequestStatus.PENDING.value
    )
    package_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    target_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    keywords: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)

    seoworks_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    pages_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    blogs_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gbp_posts_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    improvements_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_tasks: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="ck_request_status",
        ),
        Index("idx_requests_user_id", "user_id"),
        Index("idx_requests_dealership_id", "dealership_id"),
        Index(
            "idx_requests_seoworks_task_id",
            "seoworks_task_id",
            postgresql_where=(seoworks_task_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        return f"<SEORequest(id={self.id}, type={self.type}, status={self.status})>"


class Task(Base):
    """One deliverable of a request."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    request_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("requests.id", ondelete="CASCADE"), nullable=True
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    agency_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dealership_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    seoworks_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_tasks_request_id", "request_id"),
        Index("idx_tasks_seoworks_task_id", "seoworks_task_id"),
    )


class OrphanedTask(Base):
    """
    ORM model for orphaned_tasks table.

    A webhook delivery that arrived before its owner could be identified.
    external_id is unique so duplicate deliveries converge on one row.
    """

    __tablename__ = "orphaned_tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    task_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    completion_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deliverables: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    linked_request_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("requests.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("external_id", name="uq_orphaned_tasks_external_id"),
        Index("idx_orphaned_tasks_processed_client_id", "processed", "client_id"),
        Index("idx_orphaned_tasks_processed_client_email", "processed", "client_email"),
        Index("idx_orphaned_tasks_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrphanedTask(id={self.id}, external_id={self.external_id}, "
            f"processed={self.processed})>"
        )


class MonthlyUsage(Base):
    """Archived usage counters for a closed billing period."""

    __tablename__ = "monthly_usage"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    dealership_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("dealerships.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    package_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    pages_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    blogs_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gbp_posts_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    improvements_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("dealership_id", "year", "month", name="uq_monthly_usage_period"),
    )
