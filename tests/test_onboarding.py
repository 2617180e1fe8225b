"""
Tests for OnboardingService.

The vendor client is an AsyncMock; reconciliation is patched at the class so
onboarding can be checked independently of orphan handling.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.db.models import Agency, Dealership, SEORequest, User
from app.exceptions import (
    DuplicateClientIdError,
    OnboardingStateError,
    RequestNotFoundError,
    UserNotFoundError,
    VendorAPIError,
)
from app.models.api import OnboardingRequest, PackageType, RequestStatus
from app.models.domain import ReconciliationResult
from app.services.onboarding import OnboardingService
from app.services.orphan_reconciliation import OrphanedTaskReconciler
from app.services.seoworks_client import SEOWorksClient
from conftest import create_dealership, create_mock_user, create_request


@pytest.fixture
def vendor() -> AsyncMock:
    client = AsyncMock(spec=SEOWorksClient)
    client.send_onboarding = AsyncMock(return_value="user_testmotors_columbus_2026")
    client.send_focus_request = AsyncMock(return_value="sw-555")
    return client


@pytest.fixture
def service(db_session: AsyncMock, vendor: AsyncMock) -> OnboardingService:
    return OnboardingService(db_session, vendor)


@pytest.fixture
def onboarding_data() -> OnboardingRequest:
    return OnboardingRequest(
        business_name="Test Motors",
        package=PackageType.PLATINUM,
        city="Columbus",
        email="owner@dealer.example",
    )


def reconcile_returning(result):
    return patch.object(
        OrphanedTaskReconciler, "process_for_user", new_callable=AsyncMock, return_value=result
    )


class TestCompleteOnboarding:
    """Tests for completing onboarding."""

    async def test_marks_user_and_dealership(
        self,
        service: OnboardingService,
        vendor: AsyncMock,
        db_session: AsyncMock,
        db_store: dict,
        onboarding_data: OnboardingRequest,
    ):
        user = create_mock_user()
        dealership = create_dealership(package="SILVER", pages=2)
        db_store[(User, "user-1")] = user
        db_store[(Dealership, "dealer-1")] = dealership
        reconciliation = ReconciliationResult(found=2, processed=2, created=1, skipped=0)

        with reconcile_returning(reconciliation) as reconcile:
            result = await service.complete_onboarding("user-1", onboarding_data)

        assert result.client_id == "user_testmotors_columbus_2026"
        assert result.reconciliation == reconciliation
        assert user.onboarding_completed is True
        assert dealership.client_id == "user_testmotors_columbus_2026"
        assert dealership.active_package_type == "PLATINUM"
        assert dealership.pages_used_this_period == 0
        vendor.send_onboarding.assert_awaited_once_with(onboarding_data, "owner@dealer.example")
        reconcile.assert_awaited_once_with(user_id="user-1")
        db_session.commit.assert_awaited_once()

    async def test_reconciliation_failure_does_not_fail_onboarding(
        self, service: OnboardingService, db_store: dict, onboarding_data: OnboardingRequest
    ):
        user = create_mock_user()
        db_store[(User, "user-1")] = user
        db_store[(Dealership, "dealer-1")] = create_dealership()

        with patch.object(
            OrphanedTaskReconciler,
            "process_for_user",
            new_callable=AsyncMock,
            side_effect=UserNotFoundError("user-1"),
        ):
            result = await service.complete_onboarding("user-1", onboarding_data)

        assert result.reconciliation is None
        assert user.onboarding_completed is True

    async def test_reconciliation_database_error_does_not_fail_onboarding(
        self,
        service: OnboardingService,
        db_session: AsyncMock,
        db_store: dict,
        onboarding_data: OnboardingRequest,
    ):
        user = create_mock_user()
        db_store[(User, "user-1")] = user
        db_store[(Dealership, "dealer-1")] = create_dealership()

        with patch.object(
            OrphanedTaskReconciler,
            "process_for_user",
            new_callable=AsyncMock,
            side_effect=OperationalError("SELECT", {}, Exception("db down")),
        ):
            result = await service.complete_onboarding("user-1", onboarding_data)

        assert result.reconciliation is None
        assert result.client_id
        assert user.onboarding_completed is True
        db_session.commit.assert_awaited_once()
        db_session.rollback.assert_awaited_once()

    async def test_unknown_user(self, service: OnboardingService, onboarding_data: OnboardingRequest):
        with pytest.raises(UserNotFoundError):
            await service.complete_onboarding("missing", onboarding_data)

    async def test_already_onboarded(
        self,
        service: OnboardingService,
        vendor: AsyncMock,
        db_store: dict,
        onboarding_data: OnboardingRequest,
    ):
        db_store[(User, "user-1")] = create_mock_user(onboarding_completed=True)

        with pytest.raises(OnboardingStateError, match="already completed"):
            await service.complete_onboarding("user-1", onboarding_data)
        vendor.send_onboarding.assert_not_awaited()

    async def test_user_without_dealership(
        self, service: OnboardingService, db_store: dict, onboarding_data: OnboardingRequest
    ):
        db_store[(User, "user-1")] = create_mock_user(dealership_id=None)

        with pytest.raises(OnboardingStateError, match="no dealership"):
            await service.complete_onboarding("user-1", onboarding_data)

    async def test_vendor_failure_leaves_user_pending(
        self,
        service: OnboardingService,
        vendor: AsyncMock,
        db_session: AsyncMock,
        db_store: dict,
        onboarding_data: OnboardingRequest,
    ):
        user = create_mock_user()
        db_store[(User, "user-1")] = user
        db_store[(Dealership, "dealer-1")] = create_dealership()
        vendor.send_onboarding.side_effect = VendorAPIError("onboarding", "HTTP 500", 500)

        with pytest.raises(VendorAPIError):
            await service.complete_onboarding("user-1", onboarding_data)

        assert user.onboarding_completed is False
        db_session.commit.assert_not_awaited()

    async def test_client_id_collision(
        self,
        service: OnboardingService,
        db_session: AsyncMock,
        db_store: dict,
        onboarding_data: OnboardingRequest,
    ):
        db_store[(User, "user-1")] = create_mock_user()
        db_store[(Dealership, "dealer-1")] = create_dealership()
        db_session.commit = AsyncMock(
            side_effect=IntegrityError("UPDATE", {}, Exception("uq_dealerships_client_id"))
        )

        with pytest.raises(DuplicateClientIdError):
            await service.complete_onboarding("user-1", onboarding_data)
        db_session.rollback.assert_awaited_once()


class TestSendFocusRequest:
    """Tests for forwarding focus requests."""

    async def test_forwards_and_marks_in_progress(
        self, service: OnboardingService, vendor: AsyncMock, db_store: dict
    ):
        request = create_request(seoworks_task_id=None)
        dealership = create_dealership(name="Jay Hatfield Chevrolet")
        dealership.settings = {
            "target_cities": ["Columbus, KS"],
            "target_vehicle_models": ["Silverado"],
        }
        db_store[(SEORequest, "req-1")] = request
        db_store[(User, "user-1")] = create_mock_user()
        db_store[(Dealership, "dealer-1")] = dealership

        result = await service.send_focus_request("req-1")

        assert result is request
        assert request.status == RequestStatus.IN_PROGRESS.value
        assert request.seoworks_task_id == "sw-555"
        assert "[Sent to SEOWorks at " in request.description
        vendor.send_focus_request.assert_awaited_once_with(
            request,
            client_email="owner@dealer.example",
            business_name="Jay Hatfield Chevrolet",
            target_cities=["Columbus, KS"],
            target_models=["Silverado"],
        )

    async def test_agency_name_used_without_dealership(
        self, service: OnboardingService, vendor: AsyncMock, db_store: dict
    ):
        request = create_request(dealership_id=None, seoworks_task_id=None)
        agency = MagicMock(spec=Agency)
        agency.name = "Rylie Agency"
        db_store[(SEORequest, "req-1")] = request
        db_store[(User, "user-1")] = create_mock_user()
        db_store[(Agency, "agency-1")] = agency
        vendor.send_focus_request.return_value = None

        await service.send_focus_request("req-1")

        assert vendor.send_focus_request.await_args.kwargs["business_name"] == "Rylie Agency"
        assert request.seoworks_task_id is None
        assert request.status == RequestStatus.IN_PROGRESS.value

    async def test_unknown_request(self, service: OnboardingService):
        with pytest.raises(RequestNotFoundError):
            await service.send_focus_request("missing")

    async def test_vendor_failure_leaves_request_pending(
        self, service: OnboardingService, vendor: AsyncMock, db_session: AsyncMock, db_store: dict
    ):
        request = create_request(seoworks_task_id=None)
        db_store[(SEORequest, "req-1")] = request
        db_store[(User, "user-1")] = create_mock_user()
        vendor.send_focus_request.side_effect = VendorAPIError("focus_request", "timeout")

        with pytest.raises(VendorAPIError):
            await service.send_focus_request("req-1")

        assert request.status == RequestStatus.PENDING.value
        db_session.commit.assert_not_awaited()
