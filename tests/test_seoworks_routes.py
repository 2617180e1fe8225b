"""
Tests for SEOWorks API Routes.

Webhook authentication and response shapes are exercised over HTTP with the
service layer patched; the remaining handlers are called directly.
"""

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.api.seoworks_routes import (
    complete_onboarding,
    list_orphaned_tasks,
    process_orphaned_tasks,
    router,
    send_focus_request,
)
from app.db.models import SEORequest
from app.db.session import get_write_db
from app.exceptions import (
    DuplicateClientIdError,
    OnboardingStateError,
    UserNotFoundError,
    VendorAPIError,
)
from app.models.api import (
    FocusRequest,
    OnboardingRequest,
    PackageType,
    ProcessOrphanedTasksRequest,
    UserRole,
)
from app.models.domain import OnboardingResult, ReconciliationResult, WebhookOutcome
from app.services.onboarding import OnboardingService
from app.services.orphan_reconciliation import OrphanedTaskReconciler
from app.services.seoworks_webhook import SEOWorksWebhookService
from conftest import create_mock_user, create_orphan, create_request

WEBHOOK_SECRET = "test-webhook-secret"

WEBHOOK_BODY = {
    "eventType": "task.completed",
    "timestamp": "2026-10-01T12:00:00Z",
    "data": {
        "externalId": "task-999",
        "clientId": "user_testmotors_columbus_2026",
        "taskType": "blog",
        "status": "completed",
        "deliverables": [{"type": "blog_post", "title": "Winter Tire Guide"}],
    },
}


@pytest.fixture
def client(db_session: AsyncMock) -> TestClient:
    app = FastAPI()
    app.include_router(router)

    async def override_db() -> AsyncIterator[AsyncMock]:
        yield db_session

    app.dependency_overrides[get_write_db] = override_db
    return TestClient(app)


def handle_event_returning(**kwargs):
    return patch.object(SEOWorksWebhookService, "handle_event", new_callable=AsyncMock, **kwargs)


class TestWebhookAuth:
    """The shared secret is required on every webhook call."""

    def test_post_without_key_is_rejected(self, client: TestClient):
        with handle_event_returning() as handle:
            response = client.post("/api/seoworks/webhook", json=WEBHOOK_BODY)

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}
        handle.assert_not_awaited()

    def test_post_with_wrong_key_is_rejected(self, client: TestClient):
        response = client.post(
            "/api/seoworks/webhook", json=WEBHOOK_BODY, headers={"x-api-key": "wrong"}
        )
        assert response.status_code == 401

    def test_get_requires_key(self, client: TestClient):
        assert client.get("/api/seoworks/webhook").status_code == 401

    def test_get_reports_active(self, client: TestClient):
        response = client.get("/api/seoworks/webhook", headers={"x-api-key": WEBHOOK_SECRET})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["message"] == "SEOWorks webhook endpoint is active"
        assert "timestamp" in body


class TestReceiveWebhook:
    """Response shapes for each webhook outcome."""

    def test_orphaned_delivery_is_acknowledged(self, client: TestClient):
        outcome = WebhookOutcome(
            event_type="task.completed", external_id="task-999", orphaned_task_id="orphan-1"
        )
        with handle_event_returning(return_value=outcome):
            response = client.post(
                "/api/seoworks/webhook", json=WEBHOOK_BODY, headers={"x-api-key": WEBHOOK_SECRET}
            )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Webhook received and task stored (dealership not yet set up)",
            "status": "stored_for_later_processing",
            "seoworksTaskId": "task-999",
            "orphanedTaskId": "orphan-1",
        }

    def test_matched_delivery(self, client: TestClient):
        outcome = WebhookOutcome(
            event_type="task.completed", external_id="task-999", request_id="req-1"
        )
        with handle_event_returning(return_value=outcome):
            response = client.post(
                "/api/seoworks/webhook", json=WEBHOOK_BODY, headers={"x-api-key": WEBHOOK_SECRET}
            )

        assert response.json() == {
            "success": True,
            "message": "Webhook processed successfully",
            "eventType": "task.completed",
            "requestId": "req-1",
        }

    def test_database_failure_returns_500(self, client: TestClient, db_session: AsyncMock):
        with handle_event_returning(side_effect=OperationalError("INSERT", {}, Exception("down"))):
            response = client.post(
                "/api/seoworks/webhook", json=WEBHOOK_BODY, headers={"x-api-key": WEBHOOK_SECRET}
            )

        assert response.status_code == 500
        assert response.json() == {"detail": "Failed to process webhook"}
        db_session.rollback.assert_awaited_once()

    def test_missing_external_id_is_422(self, client: TestClient):
        body = {"eventType": "task.completed", "data": {"taskType": "blog", "status": "completed"}}
        response = client.post(
            "/api/seoworks/webhook", json=body, headers={"x-api-key": WEBHOOK_SECRET}
        )
        assert response.status_code == 422


class TestProcessOrphanedTasks:
    """Tests for the admin reconciliation endpoint."""

    async def test_reports_counts(self, db_session: AsyncMock):
        admin = create_mock_user(user_id="admin-1", role=UserRole.SUPER_ADMIN)
        result = ReconciliationResult(found=3, processed=2, created=1, skipped=1)

        with patch.object(
            OrphanedTaskReconciler, "process_for_user", new_callable=AsyncMock, return_value=result
        ) as process:
            response = await process_orphaned_tasks(
                ProcessOrphanedTasksRequest(user_email="owner@dealer.example"), db_session, admin
            )

        process.assert_awaited_once_with(
            user_id=None, user_email="owner@dealer.example", external_id=None
        )
        assert (response.found, response.processed, response.created, response.skipped) == (3, 2, 1, 1)
        assert response.message == "Processed 2 orphaned tasks, created 1 requests"

    async def test_unknown_user_is_404(self, db_session: AsyncMock):
        admin = create_mock_user(user_id="admin-1", role=UserRole.SUPER_ADMIN)

        with patch.object(
            OrphanedTaskReconciler,
            "process_for_user",
            new_callable=AsyncMock,
            side_effect=UserNotFoundError("missing"),
        ):
            with pytest.raises(HTTPException) as exc_info:
                await process_orphaned_tasks(
                    ProcessOrphanedTasksRequest(user_id="missing"), db_session, admin
                )

        assert exc_info.value.status_code == 404

    def test_request_needs_a_selector(self):
        with pytest.raises(ValueError):
            ProcessOrphanedTasksRequest()


class TestListOrphanedTasks:
    async def test_lists_with_summary(self, db_session: AsyncMock):
        admin = create_mock_user(user_id="admin-1", role=UserRole.SUPER_ADMIN)
        orphan = create_orphan()

        with (
            patch.object(
                OrphanedTaskReconciler,
                "list_orphaned_tasks",
                new_callable=AsyncMock,
                return_value=[orphan],
            ) as list_tasks,
            patch.object(
                OrphanedTaskReconciler, "summarize", new_callable=AsyncMock, return_value=[]
            ) as summarize,
        ):
            response = await list_orphaned_tasks(
                processed=False,
                client_id="user-1",
                client_email=None,
                limit=50,
                db=db_session,
                _admin=admin,
            )

        assert response.total == 1
        assert response.tasks[0].external_id == "task-999"
        list_tasks.assert_awaited_once_with(
            processed=False, client_id="user-1", client_email=None, limit=50
        )
        summarize.assert_awaited_once_with(processed=False, client_id="user-1", client_email=None)


class TestCompleteOnboarding:
    """Error mapping for onboarding."""

    @pytest.fixture
    def onboarding(self) -> OnboardingRequest:
        return OnboardingRequest(
            business_name="Test Motors",
            package=PackageType.GOLD,
            city="Columbus",
            email="owner@dealer.example",
        )

    async def test_success(self, db_session: AsyncMock, onboarding: OnboardingRequest):
        result = OnboardingResult(
            client_id="user_testmotors_columbus_2026",
            reconciliation=ReconciliationResult(found=1, processed=1, created=1, skipped=0),
        )
        with patch.object(
            OnboardingService, "complete_onboarding", new_callable=AsyncMock, return_value=result
        ):
            response = await complete_onboarding(
                onboarding, db_session, create_mock_user(), AsyncMock()
            )

        assert response.client_id == "user_testmotors_columbus_2026"
        assert response.orphaned_tasks_created == 1

    @pytest.mark.parametrize(
        ("error", "status_code"),
        [
            (UserNotFoundError("user-1"), 404),
            (OnboardingStateError("user-1", "user has already completed onboarding"), 400),
            (DuplicateClientIdError("user_testmotors_columbus_2026"), 409),
            (VendorAPIError("onboarding", "HTTP 500", 500), 502),
        ],
    )
    async def test_error_mapping(
        self, db_session: AsyncMock, onboarding: OnboardingRequest, error: Exception, status_code: int
    ):
        with patch.object(
            OnboardingService, "complete_onboarding", new_callable=AsyncMock, side_effect=error
        ):
            with pytest.raises(HTTPException) as exc_info:
                await complete_onboarding(onboarding, db_session, create_mock_user(), AsyncMock())

        assert exc_info.value.status_code == status_code


class TestSendFocusRequest:
    """Authorization and error mapping for focus requests."""

    async def test_owner_can_send(self, db_session: AsyncMock, db_store: dict):
        request = create_request(seoworks_task_id=None)
        db_store[(SEORequest, "req-1")] = request

        async def send(request_id: str) -> SEORequest:
            request.seoworks_task_id = "sw-1"
            return request

        with patch.object(OnboardingService, "send_focus_request", side_effect=send):
            response = await send_focus_request(
                FocusRequest(request_id="req-1"), db_session, create_mock_user(), AsyncMock()
            )

        assert response.request_id == "req-1"
        assert response.seoworks_task_id == "sw-1"

    async def test_unknown_request_is_404(self, db_session: AsyncMock):
        with pytest.raises(HTTPException) as exc_info:
            await send_focus_request(
                FocusRequest(request_id="missing"), db_session, create_mock_user(), AsyncMock()
            )
        assert exc_info.value.status_code == 404

    async def test_stranger_is_403(self, db_session: AsyncMock, db_store: dict):
        db_store[(SEORequest, "req-1")] = create_request()
        stranger = create_mock_user(user_id="user-2", dealership_id="dealer-2")

        with pytest.raises(HTTPException) as exc_info:
            await send_focus_request(FocusRequest(request_id="req-1"), db_session, stranger, AsyncMock())
        assert exc_info.value.status_code == 403

    async def test_dealership_colleague_with_write_access(self, db_session: AsyncMock, db_store: dict):
        request = create_request()
        db_store[(SEORequest, "req-1")] = request
        colleague = create_mock_user(user_id="user-2", dealership_id="dealer-1")

        with patch.object(
            OnboardingService, "send_focus_request", new_callable=AsyncMock, return_value=request
        ):
            response = await send_focus_request(
                FocusRequest(request_id="req-1"), db_session, colleague, AsyncMock()
            )

        assert response.request_id == "req-1"

    async def test_vendor_failure_is_502(self, db_session: AsyncMock, db_store: dict):
        db_store[(SEORequest, "req-1")] = create_request()

        with patch.object(
            OnboardingService,
            "send_focus_request",
            new_callable=AsyncMock,
            side_effect=VendorAPIError("focus_request", "timeout"),
        ):
            with pytest.raises(HTTPException) as exc_info:
                await send_focus_request(
                    FocusRequest(request_id="req-1"), db_session, create_mock_user(), AsyncMock()
                )
        assert exc_info.value.status_code == 502
