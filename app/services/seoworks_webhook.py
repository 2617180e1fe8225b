"""
SEOWorks Webhook Service - Applies vendor task events.

Each delivery ends in exactly one of:
- an update to the existing request carrying the vendor task ID,
- a new COMPLETED request for an owner identified from the payload,
- an orphaned_tasks row kept for later reconciliation.

Deliveries are never dropped. Orphans are upserted on external_id so repeated
or concurrent deliveries of one vendor task converge on a single row.
"""

from datetime import UTC, datetime

from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import OrphanedTask, SEORequest, new_id
from app.models.api import RequestStatus, SEOWorksWebhookPayload, TaskType, WebhookEventType
from app.models.domain import TaskOwner, WebhookOutcome
from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.orphan_reconciliation import (
    build_vendor_request,
    completed_task_entry,
    resolve_task_owner,
)
from app.services.package_usage import PackageUsageService, is_package_complete
from app.services.task_types import COMPLETION_FIELDS, map_vendor_task_type, parse_vendor_datetime

logger = get_logger(__name__)

# Vendor statuses that mean work has started
IN_PROGRESS_STATUSES = frozenset({"in_progress", "in-progress", "started", "working"})


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SEOWorksWebhookService:
    """Handles one webhook delivery per call; commits before returning."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.usage = PackageUsageService(session)

    async def handle_event(self, payload: SEOWorksWebhookPayload) -> WebhookOutcome:
        data = payload.data
        event_type = payload.event_type

        with trace_operation(
            "seoworks_webhook", event_type=event_type, external_id=data.external_id
        ) as span:
            request = await self._find_request(data.external_id)
            if request is not None:
                await self._apply_to_request(request, payload)
                await self.session.commit()
                metrics.record_webhook_event(event_type, "matched")
                span.set_attribute("outcome", "matched")
                return WebhookOutcome(
                    event_type=event_type, external_id=data.external_id, request_id=request.id
                )

            task_type = map_vendor_task_type(data.task_type)
            if event_type == WebhookEventType.TASK_COMPLETED.value and task_type is not None:
                owner = await resolve_task_owner(self.session, data.client_id, data.client_email)
                if owner is not None:
                    request = await self._create_request_for_owner(owner, payload, task_type)
                    await self.session.commit()
                    metrics.record_webhook_event(event_type, "created")
                    span.set_attribute("outcome", "created")
                    logger.info(
                        "webhook_request_created",
                        external_id=data.external_id,
                        request_id=request.id,
                        user_id=owner.user_id,
                    )
                    return WebhookOutcome(
                        event_type=event_type,
                        external_id=data.external_id,
                        request_id=request.id,
                    )

            orphan_id = await self._store_orphan(payload)
            await self.session.commit()
            metrics.record_webhook_event(event_type, "orphaned")
            span.set_attribute("outcome", "orphaned")
            logger.info(
                "orphaned_task_stored",
                external_id=data.external_id,
                orphaned_task_id=orphan_id,
                event_type=event_type,
                task_type=data.task_type,
                client_id=data.client_id,
                client_email=data.client_email,
            )
            return WebhookOutcome(
                event_type=event_type, external_id=data.external_id, orphaned_task_id=orphan_id
            )

    # ========================================================================
    # Existing requests
    # ========================================================================

    async def _apply_to_request(
        self, request: SEORequest, payload: SEOWorksWebhookPayload
    ) -> None:
        event_type = payload.event_type
        if event_type == WebhookEventType.TASK_COMPLETED.value:
            await self._handle_task_completed(request, payload)
        elif event_type == WebhookEventType.TASK_UPDATED.value:
            await self._handle_task_updated(request, payload)
        elif event_type == WebhookEventType.TASK_CANCELLED.value:
            await self._handle_task_cancelled(request, payload)
        else:
            logger.info(
                "webhook_event_unhandled",
                event_type=event_type,
                request_id=request.id,
                external_id=payload.data.external_id,
            )

    async def _handle_task_completed(
        self, request: SEORequest, payload: SEOWorksWebhookPayload
    ) -> None:
        data = payload.data
        vendor_completed_at = parse_vendor_datetime(data.completion_date)
        completed_at = vendor_completed_at or _utc_now()
        deliverables = [d.model_dump(mode="json", exclude_none=True) for d in data.deliverables]
        entry = completed_task_entry(data.external_id, data.task_type, deliverables, completed_at)

        completed_tasks = list(request.completed_tasks or [])
        if any(
            existing.get("externalId") == entry["externalId"]
            and existing.get("title") == entry["title"]
            # Without a vendor date completedAt is local time and cannot key a delivery
            and (vendor_completed_at is None or existing.get("completedAt") == entry["completedAt"])
            for existing in completed_tasks
        ):
            logger.info(
                "webhook_duplicate_delivery_ignored",
                request_id=request.id,
                external_id=data.external_id,
            )
            return

        # Reassign so the JSONB change is tracked
        request.completed_tasks = [*completed_tasks, entry]

        task_type = map_vendor_task_type(data.task_type)
        if task_type is not None:
            field = COMPLETION_FIELDS[task_type]
            setattr(request, field, (getattr(request, field) or 0) + 1)
        else:
            logger.warning(
                "webhook_unmappable_task_type",
                request_id=request.id,
                task_type=data.task_type,
            )

        if request.status != RequestStatus.COMPLETED.value and is_package_complete(request):
            request.status = RequestStatus.COMPLETED.value
            request.completed_at = completed_at

        await self.session.flush()

        if task_type is not None and request.dealership_id:
            await self.usage.record_delivery(request.dealership_id, task_type, data.external_id)

        logger.info(
            "task_completed_webhook_processed",
            request_id=request.id,
            task_type=data.task_type,
            user_id=request.user_id,
            status=request.status,
        )

    async def _handle_task_updated(
        self, request: SEORequest, payload: SEOWorksWebhookPayload
    ) -> None:
        status = payload.data.status.strip().lower()
        if request.status == RequestStatus.PENDING.value and status in IN_PROGRESS_STATUSES:
            request.status = RequestStatus.IN_PROGRESS.value
            await self.session.flush()
        logger.info(
            "task_updated_webhook_received",
            request_id=request.id,
            task_type=payload.data.task_type,
            vendor_status=payload.data.status,
            status=request.status,
        )

    async def _handle_task_cancelled(
        self, request: SEORequest, payload: SEOWorksWebhookPayload
    ) -> None:
        if request.status != RequestStatus.COMPLETED.value:
            request.status = RequestStatus.CANCELLED.value
            await self.session.flush()
        logger.info(
            "task_cancelled_webhook_processed",
            request_id=request.id,
            task_type=payload.data.task_type,
            status=request.status,
        )

    # ========================================================================
    # New requests / orphans
    # ========================================================================

    async def _create_request_for_owner(
        self, owner: TaskOwner, payload: SEOWorksWebhookPayload, task_type: TaskType
    ) -> SEORequest:
        data = payload.data
        request, task = build_vendor_request(
            owner,
            external_id=data.external_id,
            raw_task_type=data.task_type,
            task_type=task_type,
            deliverables=[d.model_dump(mode="json", exclude_none=True) for d in data.deliverables],
            completed_at=parse_vendor_datetime(data.completion_date) or _utc_now(),
            origin="Task created from SEOWorks webhook",
            vendor_notes=data.notes,
        )
        self.session.add(request)
        await self.session.flush()
        self.session.add(task)
        await self.session.flush()

        await self.usage.record_delivery(owner.dealership_id, task_type, data.external_id)
        return request

    async def _store_orphan(self, payload: SEOWorksWebhookPayload) -> str:
        """Upsert the delivery into orphaned_tasks and return the row ID."""
        data = payload.data
        values = {
            "event_type": payload.event_type,
            "task_type": data.task_type,
            "status": data.status,
            "client_id": data.client_id,
            "client_email": data.client_email,
            "completion_date": parse_vendor_datetime(data.completion_date),
            "deliverables": [d.model_dump(mode="json", exclude_none=True) for d in data.deliverables],
            "raw_payload": payload.model_dump(mode="json", by_alias=True),
        }
        stmt = insert(OrphanedTask).values(
            id=new_id(),
            external_id=data.external_id,
            processed=False,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_orphaned_tasks_external_id",
            set_={**{key: stmt.excluded[key] for key in values}, "updated_at": _utc_now()},
            where=OrphanedTask.processed.is_(False),
        ).returning(OrphanedTask.id)

        result = await self.session.execute(stmt)
        orphan_id = result.scalar_one_or_none()
        if orphan_id is not None:
            return orphan_id

        # Row exists and was already processed; it is left as reconciled
        existing = await self.session.execute(
            select(OrphanedTask.id).where(OrphanedTask.external_id == data.external_id)
        )
        return existing.scalar_one()

    async def _find_request(self, external_id: str) -> SEORequest | None:
        result = await self.session.execute(
            select(SEORequest)
            .where(or_(SEORequest.seoworks_task_id == external_id, SEORequest.id == external_id))
            .limit(1)
        )
        return result.scalar_one_or_none()
