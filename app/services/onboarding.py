"""
Onboarding Service - Dealership onboarding and focus requests.

Completing onboarding registers the dealership with SEOWorks and then
reconciles any deliveries that arrived for the user before onboarding.
"""

from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Agency, Dealership, SEORequest, User
from app.exceptions import (
    DuplicateClientIdError,
    OnboardingStateError,
    RequestNotFoundError,
    SEOHubError,
    UserNotFoundError,
)
from app.models.api import OnboardingRequest, RequestStatus
from app.models.domain import OnboardingResult
from app.observability.logging import get_logger, log_context
from app.services.orphan_reconciliation import OrphanedTaskReconciler
from app.services.package_usage import PackageUsageService
from app.services.seoworks_client import SEOWorksClient

logger = get_logger(__name__)


class OnboardingService:
    def __init__(self, session: AsyncSession, client: SEOWorksClient) -> None:
        self.session = session
        self.client = client
        self.usage = PackageUsageService(session)

    async def complete_onboarding(self, user_id: str, data: OnboardingRequest) -> OnboardingResult:
        """
        Send onboarding to SEOWorks, mark the user onboarded, then reconcile.

        A reconciliation failure is logged; onboarding itself stays complete.

        Raises:
            UserNotFoundError: unknown user
            OnboardingStateError: already onboarded, or no dealership assigned
            VendorAPIError: SEOWorks rejected the onboarding
        """
        with log_context(user_id=user_id):
            user = await self.session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            if user.onboarding_completed:
                raise OnboardingStateError(user_id, "user has already completed onboarding")
            if not user.dealership_id:
                raise OnboardingStateError(user_id, "user has no dealership assigned")

            dealership = await self.session.get(Dealership, user.dealership_id)
            if dealership is None:
                raise OnboardingStateError(user_id, "user has no dealership assigned")

            client_id = await self.client.send_onboarding(data, data.email)

            user.onboarding_completed = True
            dealership.client_id = client_id
            await self.usage.change_package(dealership, data.package)
            try:
                await self.session.commit()
            except IntegrityError as exc:
                await self.session.rollback()
                raise DuplicateClientIdError(client_id) from exc

            completed_at = datetime.now(UTC)
            logger.info(
                "onboarding_completed",
                dealership_id=user.dealership_id,
                client_id=client_id,
                package=data.package.value,
            )

            try:
                reconciliation = await OrphanedTaskReconciler(self.session).process_for_user(
                    user_id=user_id
                )
            except (SEOHubError, SQLAlchemyError) as exc:
                await self.session.rollback()
                logger.error("onboarding_reconciliation_failed", error=str(exc), exc_info=True)
                reconciliation = None

            return OnboardingResult(
                client_id=client_id, reconciliation=reconciliation, completed_at=completed_at
            )

    async def send_focus_request(self, request_id: str) -> SEORequest:
        """
        Forward a request to SEOWorks and move it to IN_PROGRESS.

        The vendor's task ID, when returned, is stored so later webhooks match.

        Raises:
            RequestNotFoundError: unknown request or request without a user
            VendorAPIError: SEOWorks rejected the request
        """
        request = await self.session.get(SEORequest, request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        user = await self.session.get(User, request.user_id)
        if user is None:
            raise RequestNotFoundError(request_id)

        business_name = user.name
        if request.agency_id:
            agency = await self.session.get(Agency, request.agency_id)
            if agency is not None:
                business_name = agency.name

        target_cities: list[str] = []
        target_models: list[str] = []
        if request.dealership_id:
            dealership = await self.session.get(Dealership, request.dealership_id)
            if dealership is not None:
                business_name = dealership.name
                target_cities = list(dealership.settings.get("target_cities", []))
                target_models = list(dealership.settings.get("target_vehicle_models", []))

        task_id = await self.client.send_focus_request(
            request,
            client_email=user.email,
            business_name=business_name,
            target_cities=target_cities,
            target_models=target_models,
        )

        sent_at = datetime.now(UTC).isoformat()
        request.description = f"{request.description or ''}\n\n[Sent to SEOWorks at {sent_at}]"
        request.status = RequestStatus.IN_PROGRESS.value
        if task_id:
            request.seoworks_task_id = task_id
        await self.session.commit()

        logger.info(
            "focus_request_forwarded",
            request_id=request.id,
            seoworks_task_id=task_id,
            user_id=user.id,
        )
        return request
