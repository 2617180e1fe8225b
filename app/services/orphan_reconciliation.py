"""
Orphaned Task Reconciliation - Attaches stored SEOWorks deliveries to their owners.

Webhooks that arrive before a dealership is onboarded are kept in
orphaned_tasks. Once the owning user exists (onboarding completed, or an
admin triggers it) the rows are turned into completed requests.

Every row is handled in its own transaction: a failure is logged, rolled
back and the run continues with the next row. Rows already marked processed
are never selected again, and an existing request carrying the same vendor
task ID is linked instead of duplicated.
"""

import time
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Dealership, OrphanedTask, SEORequest, Task, User, new_id
from app.exceptions import UserNotFoundError
from app.models.api import OrphanedTaskSummaryItem, RequestStatus, TaskType, WebhookEventType
from app.models.domain import ReconciliationResult, TaskOwner
from app.observability.logging import get_logger, log_context
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.package_usage import PackageUsageService
from app.services.task_types import COMPLETION_FIELDS, map_vendor_task_type

logger = get_logger(__name__)

ORPHAN_LIST_LIMIT = 100


def _utc_now() -> datetime:
    return datetime.now(UTC)


def append_note(orphan: OrphanedTask, note: str) -> None:
    """Append a line to the orphan's notes, skipping exact repeats."""
    existing = orphan.notes or ""
    if note in existing.splitlines():
        return
    orphan.notes = f"{existing}\n{note}" if existing else note


def orphan_filters(
    processed: bool | None = None,
    client_id: str | None = None,
    client_email: str | None = None,
) -> list[Any]:
    """WHERE clauses shared by the orphan listing and its summary."""
    filters: list[Any] = []
    if processed is not None:
        filters.append(OrphanedTask.processed.is_(processed))
    if client_id:
        filters.append(OrphanedTask.client_id == client_id)
    if client_email:
        filters.append(OrphanedTask.client_email == client_email.lower())
    return filters


def owns_orphan(owner: TaskOwner, orphan: OrphanedTask) -> bool:
    """Whether the row's client id or email points at this owner."""
    client_ids = {owner.user_id, owner.dealership_id, owner.dealership_client_id} - {None}
    if orphan.client_id and orphan.client_id in client_ids:
        return True
    return bool(orphan.client_email) and orphan.client_email.lower() == owner.email.lower()


def completed_task_entry(
    external_id: str,
    raw_task_type: str,
    deliverables: list[dict[str, Any]],
    completed_at: datetime,
) -> dict[str, Any]:
    """The JSON record appended to SEORequest.completed_tasks for one delivery."""
    first = deliverables[0] if deliverables else {}
    return {
        "externalId": external_id,
        "title": first.get("title") or raw_task_type,
        "type": raw_task_type,
        "url": first.get("url"),
        "completedAt": completed_at.isoformat(),
    }


def build_vendor_request(
    owner: TaskOwner,
    *,
    external_id: str,
    raw_task_type: str,
    task_type: TaskType,
    deliverables: list[dict[str, Any]],
    completed_at: datetime,
    origin: str,
    vendor_notes: str | None = None,
) -> tuple[SEORequest, Task]:
    """
    Build a COMPLETED request and its task for a delivery with no prior request.

    Nothing is added to the session here.
    """
    first = deliverables[0] if deliverables else {}
    title = first.get("title") or f"SEOWorks {raw_task_type} Task"

    description = (
        f"{origin}\n\n"
        f"Original Task ID: {external_id}\n"
        f"Completed: {completed_at.isoformat()}"
    )
    if vendor_notes:
        description += f"\n\nOriginal Notes: {vendor_notes}"

    request = SEORequest(
        id=new_id(),
        user_id=owner.user_id,
        agency_id=owner.agency_id,
        dealership_id=owner.dealership_id,
        title=title,
        description=description,
        type=task_type.value,
        status=RequestStatus.COMPLETED.value,
        seoworks_task_id=external_id,
        completed_at=completed_at,
        completed_tasks=[completed_task_entry(external_id, raw_task_type, deliverables, completed_at)],
        pages_completed=0,
        blogs_completed=0,
        gbp_posts_completed=0,
        improvements_completed=0,
    )
    setattr(request, COMPLETION_FIELDS[task_type], 1)

    task = Task(
        id=new_id(),
        request_id=request.id,
        user_id=owner.user_id,
        agency_id=owner.agency_id,
        dealership_id=owner.dealership_id,
        type=task_type.value,
        status=RequestStatus.COMPLETED.value,
        title=title,
        url=first.get("url"),
        seoworks_task_id=external_id,
        completed_at=completed_at,
    )
    return request, task


async def resolve_task_owner(
    session: AsyncSession, client_id: str | None, client_email: str | None
) -> TaskOwner | None:
    """
    Identify the user a vendor task belongs to.

    clientId is tried as a user ID, then as a dealership client ID or
    dealership ID (first user of that dealership); clientEmail as a user email.
    """
    if client_id:
        user = await session.get(User, client_id)
        if user is not None:
            return await _owner_from_user(session, user)

        result = await session.execute(
            select(Dealership)
            .where(or_(Dealership.client_id == client_id, Dealership.id == client_id))
            .limit(1)
        )
        dealership = result.scalar_one_or_none()
        if dealership is not None:
            result = await session.execute(
                select(User)
                .where(User.dealership_id == dealership.id)
                .order_by(User.created_at)
                .limit(1)
            )
            user = result.scalar_one_or_none()
            if user is not None:
                return TaskOwner(
                    user_id=user.id,
                    email=user.email,
                    agency_id=user.agency_id or dealership.agency_id,
                    dealership_id=dealership.id,
                    dealership_client_id=dealership.client_id,
                )

    if client_email:
        result = await session.execute(
            select(User).where(func.lower(User.email) == client_email.lower()).limit(1)
        )
        user = result.scalar_one_or_none()
        if user is not None:
            return await _owner_from_user(session, user)

    return None


async def _owner_from_user(session: AsyncSession, user: User) -> TaskOwner:
    dealership_client_id = None
    if user.dealership_id:
        dealership = await session.get(Dealership, user.dealership_id)
        if dealership is not None:
            dealership_client_id = dealership.client_id
    return TaskOwner(
        user_id=user.id,
        email=user.email,
        agency_id=user.agency_id,
        dealership_id=user.dealership_id,
        dealership_client_id=dealership_client_id,
    )


class OrphanedTaskReconciler:
    """Turns unprocessed orphaned tasks into requests for a known user."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.usage = PackageUsageService(session)

    async def process_for_user(
        self,
        user_id: str | None = None,
        user_email: str | None = None,
        external_id: str | None = None,
    ) -> ReconciliationResult:
        """
        Reconcile orphaned tasks for a user, or a single task by external ID.

        With only external_id, the owner is resolved from the stored row. With a
        user and an external_id the row is assigned to that user even when its
        client id or email belongs to someone else; the reassignment is logged
        and noted on the row.

        Raises:
            UserNotFoundError: no user matches the selectors
        """
        owner = await self._resolve_owner(user_id, user_email, external_id)
        if external_id and (user_id or user_email):
            await self._note_reassignment(owner, external_id)

        start = time.time()
        with log_context(user_id=owner.user_id), trace_operation(
            "orphan_reconciliation", user_id=owner.user_id, external_id=external_id
        ) as span:
            orphan_ids = await self._find_unprocessed_ids(owner, external_id)
            result = await self._process_all(owner, orphan_ids)
            span.set_attribute("found", result.found)
            span.set_attribute("created", result.created)

        metrics.record_reconciliation(
            result.processed, result.created, result.skipped, result.failed, time.time() - start
        )
        logger.info(
            "orphaned_tasks_reconciled",
            user_id=owner.user_id,
            found=result.found,
            processed=result.processed,
            created=result.created,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    async def _resolve_owner(
        self, user_id: str | None, user_email: str | None, external_id: str | None
    ) -> TaskOwner:
        if user_id or user_email:
            user = await self._find_user(user_id, user_email)
            if user is None:
                raise UserNotFoundError(user_id or user_email or "")
            return await _owner_from_user(self.session, user)

        if external_id:
            orphan = await self._find_orphan_by_external_id(external_id)
            if orphan is not None:
                owner = await resolve_task_owner(
                    self.session, orphan.client_id, orphan.client_email
                )
                if owner is not None:
                    return owner
            raise UserNotFoundError(external_id)

        raise UserNotFoundError("")

    async def _note_reassignment(self, owner: TaskOwner, external_id: str) -> None:
        orphan = await self._find_orphan_by_external_id(external_id)
        if orphan is None or orphan.processed or owns_orphan(owner, orphan):
            return
        logger.warning(
            "orphaned_task_reassigned",
            external_id=external_id,
            client_id=orphan.client_id,
            client_email=orphan.client_email,
            user_id=owner.user_id,
        )
        append_note(orphan, f"Reassigned by admin to user {owner.user_id}")

    async def _process_all(
        self, owner: TaskOwner, orphan_ids: list[str]
    ) -> ReconciliationResult:
        processed = created = skipped = failed = 0
        linked: list[str] = []

        for orphan_id in orphan_ids:
            try:
                orphan = await self.session.get(OrphanedTask, orphan_id)
                if orphan is None or orphan.processed:
                    continue
                outcome, request_id = await self._process_one(orphan, owner)
                await self.session.commit()
            except Exception as exc:
                failed += 1
                await self.session.rollback()
                metrics.record_error(type(exc).__name__, "orphan_reconciliation")
                logger.error(
                    "orphaned_task_processing_failed",
                    orphan_id=orphan_id,
                    user_id=owner.user_id,
                    error=str(exc),
                    exc_info=True,
                )
                continue

            if outcome == "skipped":
                skipped += 1
                continue
            processed += 1
            if outcome == "created":
                created += 1
            if request_id:
                linked.append(request_id)

        return ReconciliationResult(
            found=len(orphan_ids),
            processed=processed,
            created=created,
            skipped=skipped,
            failed=failed,
            linked_request_ids=tuple(linked),
        )

    async def _process_one(
        self, orphan: OrphanedTask, owner: TaskOwner
    ) -> tuple[str, str | None]:
        """
        Handle one orphan. Returns (outcome, linked request id).

        Outcomes: created, linked, processed (no request), skipped (left unprocessed).
        """
        if orphan.event_type != WebhookEventType.TASK_COMPLETED.value:
            orphan.processed = True
            append_note(orphan, f"Task was {orphan.event_type} status")
            await self.session.flush()
            return "processed", None

        task_type = map_vendor_task_type(orphan.task_type)
        if task_type is None:
            append_note(
                orphan, f"Unmappable task type '{orphan.task_type}'; left for manual review"
            )
            await self.session.flush()
            logger.warning(
                "orphaned_task_unmappable_type",
                external_id=orphan.external_id,
                task_type=orphan.task_type,
            )
            return "skipped", None

        existing = await self._find_request_by_task_id(orphan.external_id)
        if existing is not None:
            orphan.processed = True
            orphan.linked_request_id = existing.id
            append_note(
                orphan, f"Linked to existing request {existing.id} for user {owner.user_id}"
            )
            await self.session.flush()
            return "linked", existing.id

        completed_at = orphan.completion_date or _utc_now()
        request, task = build_vendor_request(
            owner,
            external_id=orphan.external_id,
            raw_task_type=orphan.task_type,
            task_type=task_type,
            deliverables=list(orphan.deliverables or []),
            completed_at=completed_at,
            origin="Task created from orphaned SEOWorks task",
            vendor_notes=(orphan.raw_payload or {}).get("data", {}).get("notes"),
        )
        self.session.add(request)
        await self.session.flush()
        self.session.add(task)

        await self.usage.record_delivery(owner.dealership_id, task_type, orphan.external_id)

        orphan.processed = True
        orphan.linked_request_id = request.id
        append_note(orphan, f"Processed and linked to request {request.id} for user {owner.user_id}")
        await self.session.flush()
        return "created", request.id

    # ========================================================================
    # Listing
    # ========================================================================

    async def list_orphaned_tasks(
        self,
        processed: bool | None = None,
        client_id: str | None = None,
        client_email: str | None = None,
        limit: int = ORPHAN_LIST_LIMIT,
    ) -> list[OrphanedTask]:
        stmt = select(OrphanedTask).where(*orphan_filters(processed, client_id, client_email))
        stmt = stmt.order_by(OrphanedTask.created_at.desc()).limit(min(limit, ORPHAN_LIST_LIMIT))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def summarize(
        self,
        processed: bool | None = None,
        client_id: str | None = None,
        client_email: str | None = None,
    ) -> list[OrphanedTaskSummaryItem]:
        """Row counts grouped by (processed, event_type, task_type), filtered like the listing."""
        stmt = (
            select(
                OrphanedTask.processed,
                OrphanedTask.event_type,
                OrphanedTask.task_type,
                func.count().label("count"),
            )
            .where(*orphan_filters(processed, client_id, client_email))
            .group_by(OrphanedTask.processed, OrphanedTask.event_type, OrphanedTask.task_type)
            .order_by(OrphanedTask.processed, OrphanedTask.event_type, OrphanedTask.task_type)
        )
        result = await self.session.execute(stmt)
        return [
            OrphanedTaskSummaryItem(
                processed=row.processed,
                event_type=row.event_type,
                task_type=row.task_type,
                count=row.count,
            )
            for row in result.all()
        ]

    # ========================================================================
    # Queries
    # ========================================================================

    async def _find_user(self, user_id: str | None, user_email: str | None) -> User | None:
        if user_id:
            return await self.session.get(User, user_id)
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == (user_email or "").lower()).limit(1)
        )
        return result.scalar_one_or_none()

    async def _find_orphan_by_external_id(self, external_id: str) -> OrphanedTask | None:
        result = await self.session.execute(
            select(OrphanedTask).where(OrphanedTask.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def _find_unprocessed_ids(
        self, owner: TaskOwner, external_id: str | None
    ) -> list[str]:
        stmt = select(OrphanedTask.id).where(OrphanedTask.processed.is_(False))
        if external_id:
            stmt = stmt.where(OrphanedTask.external_id == external_id)
        else:
            matches = [
                OrphanedTask.client_id == owner.user_id,
                OrphanedTask.client_email == owner.email.lower(),
            ]
            if owner.dealership_id:
                matches.append(OrphanedTask.client_id == owner.dealership_id)
            if owner.dealership_client_id:
                matches.append(OrphanedTask.client_id == owner.dealership_client_id)
            stmt = stmt.where(or_(*matches))
        stmt = stmt.order_by(OrphanedTask.created_at.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _find_request_by_task_id(self, external_id: str) -> SEORequest | None:
        result = await self.session.execute(
            select(SEORequest).where(SEORequest.seoworks_task_id == external_id).limit(1)
        )
        return result.scalar_one_or_none()
