"""
SEOWorks Routes - Vendor webhook, orphaned task administration, outbound requests.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import (
    get_current_user,
    get_seoworks_client,
    require_super_admin,
    verify_seoworks_api_key,
)
from app.db.models import SEORequest, User
from app.db.session import get_read_db, get_write_db
from app.exceptions import (
    DuplicateClientIdError,
    OnboardingStateError,
    RequestNotFoundError,
    UserNotFoundError,
    VendorAPIError,
)
from app.models.api import (
    AccessLevel,
    FocusRequest,
    FocusRequestResponse,
    OnboardingRequest,
    OnboardingResponse,
    OrphanedTaskItem,
    OrphanedTaskListResponse,
    ProcessOrphanedTasksRequest,
    ProcessOrphanedTasksResponse,
    SEOWorksWebhookPayload,
    UserRole,
    WebhookResponse,
    WebhookStatusResponse,
)
from app.observability.metrics import metrics
from app.services.access import has_dealership_access
from app.services.onboarding import OnboardingService
from app.services.orphan_reconciliation import ORPHAN_LIST_LIMIT, OrphanedTaskReconciler
from app.services.seoworks_client import SEOWorksClient
from app.services.seoworks_webhook import SEOWorksWebhookService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/seoworks", tags=["seoworks"])


# ============================================================================
# Webhook
# ============================================================================


@router.get(
    "/webhook",
    response_model=WebhookStatusResponse,
    dependencies=[Depends(verify_seoworks_api_key)],
)
async def webhook_status() -> WebhookStatusResponse:
    """Connectivity check for the vendor."""
    return WebhookStatusResponse(timestamp=datetime.now(UTC).isoformat())


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
    response_model_by_alias=True,
    dependencies=[Depends(verify_seoworks_api_key)],
)
async def receive_webhook(
    payload: SEOWorksWebhookPayload,
    db: AsyncSession = Depends(get_write_db),
) -> WebhookResponse:
    """
    Apply a task event from SEOWorks.

    Events that cannot be attributed to a user yet are stored as orphaned
    tasks and acknowledged; they are never dropped.

    Auth: x-api-key header equal to SEOWORKS_WEBHOOK_SECRET
    """
    service = SEOWorksWebhookService(db)
    try:
        outcome = await service.handle_event(payload)
    except SQLAlchemyError as exc:
        await db.rollback()
        metrics.record_error(type(exc).__name__, "seoworks_webhook")
        logger.error(
            "seoworks_webhook_failed",
            event_type=payload.event_type,
            external_id=payload.data.external_id,
            error=str(exc),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process webhook",
        ) from exc

    if outcome.orphaned:
        return WebhookResponse(
            message="Webhook received and task stored (dealership not yet set up)",
            status="stored_for_later_processing",
            seoworks_task_id=outcome.external_id,
            orphaned_task_id=outcome.orphaned_task_id,
        )

    return WebhookResponse(
        message="Webhook processed successfully",
        event_type=outcome.event_type,
        request_id=outcome.request_id,
    )


# ============================================================================
# Orphaned tasks
# ============================================================================


@router.post("/process-orphaned-tasks", response_model=ProcessOrphanedTasksResponse)
async def process_orphaned_tasks(
    request: ProcessOrphanedTasksRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_super_admin),
) -> ProcessOrphanedTasksResponse:
    """
    Reconcile orphaned tasks for a user (by ID or email) or a single external ID.

    Auth: SUPER_ADMIN session
    """
    reconciler = OrphanedTaskReconciler(db)
    try:
        result = await reconciler.process_for_user(
            user_id=request.user_id,
            user_email=request.user_email,
            external_id=request.external_id,
        )
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    logger.info(
        "orphaned_tasks_processed_by_admin",
        admin_id=admin.id,
        found=result.found,
        processed=result.processed,
        created=result.created,
    )
    return ProcessOrphanedTasksResponse(
        user_id=request.user_id,
        found=result.found,
        processed=result.processed,
        created=result.created,
        skipped=result.skipped,
        message=(
            f"Processed {result.processed} orphaned tasks, "
            f"created {result.created} requests"
        ),
    )


@router.get("/orphaned-tasks", response_model=OrphanedTaskListResponse)
async def list_orphaned_tasks(
    processed: bool | None = Query(None),
    client_id: str | None = Query(None, alias="clientId"),
    client_email: str | None = Query(None, alias="clientEmail"),
    limit: int = Query(ORPHAN_LIST_LIMIT, ge=1, le=ORPHAN_LIST_LIMIT),
    db: AsyncSession = Depends(get_read_db),
    _admin: User = Depends(require_super_admin),
) -> OrphanedTaskListResponse:
    """
    List orphaned tasks (newest first) with counts grouped by status and type.

    Auth: SUPER_ADMIN session
    """
    reconciler = OrphanedTaskReconciler(db)
    tasks = await reconciler.list_orphaned_tasks(
        processed=processed, client_id=client_id, client_email=client_email, limit=limit
    )
    summary = await reconciler.summarize(
        processed=processed, client_id=client_id, client_email=client_email
    )
    return OrphanedTaskListResponse(
        tasks=[OrphanedTaskItem.model_validate(task) for task in tasks],
        summary=summary,
        total=len(tasks),
    )


# ============================================================================
# Outbound requests
# ============================================================================


@router.post("/complete-onboarding", response_model=OnboardingResponse)
async def complete_onboarding(
    request: OnboardingRequest,
    db: AsyncSession = Depends(get_write_db),
    user: User = Depends(get_current_user),
    client: SEOWorksClient = Depends(get_seoworks_client),
) -> OnboardingResponse:
    """
    Register the caller's dealership with SEOWorks and pick up early deliveries.

    Auth: session of the user being onboarded
    """
    service = OnboardingService(db, client)
    try:
        result = await service.complete_onboarding(user.id, request)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except OnboardingStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.reason,
        ) from exc
    except DuplicateClientIdError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except VendorAPIError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send onboarding to SEOWorks",
        ) from exc

    reconciliation = result.reconciliation
    return OnboardingResponse(
        client_id=result.client_id,
        orphaned_tasks_processed=reconciliation.processed if reconciliation else 0,
        orphaned_tasks_created=reconciliation.created if reconciliation else 0,
    )


@router.post("/send-focus-request", response_model=FocusRequestResponse)
async def send_focus_request(
    request: FocusRequest,
    db: AsyncSession = Depends(get_write_db),
    user: User = Depends(get_current_user),
    client: SEOWorksClient = Depends(get_seoworks_client),
) -> FocusRequestResponse:
    """
    Forward an SEO request to SEOWorks.

    Auth: the request's owner, or a user with WRITE access to its dealership
    """
    seo_request = await db.get(SEORequest, request.request_id)
    if seo_request is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Request not found",
        )
    if not await _can_send(db, user, seo_request):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to send this request",
        )

    service = OnboardingService(db, client)
    try:
        sent = await service.send_focus_request(request.request_id)
    except RequestNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Request not found",
        ) from exc
    except VendorAPIError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send focus request to SEOWorks",
        ) from exc

    return FocusRequestResponse(request_id=sent.id, seoworks_task_id=sent.seoworks_task_id)


async def _can_send(db: AsyncSession, user: User, seo_request: SEORequest) -> bool:
    if user.role == UserRole.SUPER_ADMIN.value or seo_request.user_id == user.id:
        return True
    if seo_request.dealership_id is None:
        return False
    return await has_dealership_access(
        db, user, seo_request.dealership_id, AccessLevel.WRITE
    )

