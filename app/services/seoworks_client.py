"""
SEOWorks outbound API client.

Sends dealership onboarding data and focus requests to the vendor. Lists are
flattened to the vendor's semicolon-separated format.
"""

import re
import time
from datetime import UTC, datetime
from typing import Any

import httpx

from app.config import get_settings
from app.db.models import SEORequest
from app.exceptions import VendorAPIError
from app.models.api import OnboardingRequest
from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def build_client_id(business_name: str, city: str, year: int | None = None) -> str:
    """Vendor client ID: user_<business alnum>_<city>_<year>, lowercased."""
    year = year or datetime.now(UTC).year
    return f"user_{_NON_ALNUM.sub('', business_name.lower())}_{city.lower()}_{year}"


def join_cities(cities: list[str]) -> str:
    """Join cities with ';', reducing "City, ST" to "City"."""
    return ";".join(city.split(",")[0].strip() for city in cities)


def extract_task_id(response: dict[str, Any]) -> str | None:
    for key in ("taskId", "id", "task_id"):
        value = response.get(key)
        if value:
            return str(value)
    return None


class SEOWorksClient:
    """Async client for the SEOWorks onboarding and focus endpoints."""

    def __init__(
        self,
        api_key: str | None = None,
        onboard_url: str | None = None,
        focus_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.seoworks_api_key
        self.onboard_url = onboard_url or settings.seoworks_onboard_url
        self.focus_url = focus_url or settings.seoworks_focus_url
        self.timeout = timeout or settings.seoworks_timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def send_onboarding(self, data: OnboardingRequest, client_email: str) -> str:
        """
        Submit a dealership's onboarding details.

        Returns:
            The client ID the vendor will echo back on webhook deliveries.

        Raises:
            VendorAPIError: the vendor rejected the request or was unreachable
        """
        now = datetime.now(UTC)
        client_id = build_client_id(data.business_name, data.city, now.year)
        payload = {
            "timestamp": now.isoformat(),
            "businessName": data.business_name,
            "clientId": client_id,
            "clientEmail": client_email,
            "package": data.package.value,
            "mainBrand": data.main_brand or "",
            "otherBrand": data.other_brand or "",
            "address": data.address or "",
            "city": data.city,
            "state": data.state or "",
            "zipCode": data.zip_code or "",
            "contactName": data.contact_name or "",
            "contactTitle": data.contact_title or "",
            "email": client_email,
            "phone": data.phone or "",
            "websiteUrl": data.website_url or "",
            "billingEmail": data.billing_email or "",
            "siteAccessNotes": data.site_access or "",
            "targetVehicleModels": ";".join(data.target_vehicle_models),
            "targetCities": join_cities(data.target_cities),
            "targetDealers": ";".join(data.target_dealers),
        }
        await self._post("onboarding", self.onboard_url, payload)
        logger.info(
            "seoworks_onboarding_sent", client_id=client_id, business_name=data.business_name
        )
        return client_id

    async def send_focus_request(
        self,
        request: SEORequest,
        client_email: str,
        business_name: str | None = None,
        target_cities: list[str] | None = None,
        target_models: list[str] | None = None,
    ) -> str | None:
        """
        Submit a focus request. Returns the vendor task ID when one is given.

        Raises:
            VendorAPIError: the vendor rejected the request or was unreachable
        """
        now = datetime.now(UTC).isoformat()
        payload = {
            "timestamp": now,
            "requestId": request.id,
            "requestType": "focus",
            "title": request.title,
            "description": request.description or "",
            "taskType": request.type,
            "priority": request.priority,
            "packageType": request.package_type or "GOLD",
            "clientEmail": client_email,
            "businessName": business_name or "Unknown Business",
            "targetUrl": request.target_url or "",
            "targetCities": join_cities(target_cities or []),
            "targetModels": ";".join(target_models or []),
            "keywords": ";".join(request.keywords or []),
            "submittedAt": now,
            "source": "rylie_focus_request",
        }
        response = await self._post("focus_request", self.focus_url, payload)
        task_id = extract_task_id(response)
        logger.info("seoworks_focus_request_sent", request_id=request.id, seoworks_task_id=task_id)
        return task_id

    async def _post(self, operation: str, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        start = time.perf_counter()
        with trace_operation(f"seoworks_{operation}", url=url):
            try:
                response = await self.http_client.post(
                    url, json=payload, headers={"x-api-key": self.api_key}
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                metrics.record_vendor_request(operation, False, time.perf_counter() - start)
                logger.error(
                    "seoworks_request_rejected",
                    operation=operation,
                    status=e.response.status_code,
                    text=e.response.text[:500],
                    payload=payload,
                )
                raise VendorAPIError(
                    operation, f"HTTP {e.response.status_code}", e.response.status_code
                ) from e
            except httpx.HTTPError as e:
                metrics.record_vendor_request(operation, False, time.perf_counter() - start)
                logger.error(
                    "seoworks_request_failed", operation=operation, error=str(e), payload=payload
                )
                raise VendorAPIError(operation, str(e) or type(e).__name__) from e

        metrics.record_vendor_request(operation, True, time.perf_counter() - start)
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
