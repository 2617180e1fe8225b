"""
Admin API routes for dealership administration.

Protected by session JWT. Dealership creation and listing require SUPER_ADMIN;
package routes also admit the AGENCY_ADMIN of the owning agency.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_current_user, get_mappings, require_super_admin
from app.db.models import Dealership, User
from app.db.session import get_read_db, get_write_db
from app.exceptions import AgencyNotFoundError, DealershipNotFoundError, DuplicateClientIdError
from app.models.api import (
    ConnectionProvisioningReport,
    DealershipCreateRequest,
    DealershipCreateResponse,
    DealershipListResponse,
    DealershipResponse,
    PackageResponse,
    PackageUpdateRequest,
    PackageUsageItem,
    UserRole,
)
from app.models.domain import UsageSnapshot
from app.services.dealerships import DealershipService
from app.services.property_mapping import PropertyMappingRegistry

logger = get_logger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])


def _package_response(dealership: Dealership, usage: list[UsageSnapshot]) -> PackageResponse:
    return PackageResponse(
        dealership_id=dealership.id,
        package_type=dealership.active_package_type,
        billing_period_start=dealership.current_billing_period_start,
        billing_period_end=dealership.current_billing_period_end,
        usage=[
            PackageUsageItem(
                task_type=item.task_type,
                used=item.used,
                limit=item.limit,
                remaining=item.remaining,
            )
            for item in usage
        ],
    )


def _require_package_admin(user: User, dealership: Dealership) -> None:
    if user.role == UserRole.SUPER_ADMIN.value:
        return
    if user.role == UserRole.AGENCY_ADMIN.value and user.agency_id == dealership.agency_id:
        return
    logger.warning(
        "package_access_denied", user_id=user.id, role=user.role, dealership_id=dealership.id
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not allowed to manage this dealership's package",
    )


# ============================================================================
# Dealerships
# ============================================================================


@router.post(
    "/dealerships",
    response_model=DealershipCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_dealership(
    request: DealershipCreateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(require_super_admin),
    mappings: PropertyMappingRegistry = Depends(get_mappings),
) -> DealershipCreateResponse:
    """
    Create a dealership and provision its GA4 / Search Console connections.

    Provisioning problems are returned in `connections`; the dealership is
    created regardless.
    """
    service = DealershipService(db, mappings)
    try:
        dealership, connections = await service.create_dealership(request)
    except AgencyNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except DuplicateClientIdError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    logger.info("dealership_created_by_admin", admin_id=admin.id, dealership_id=dealership.id)
    return DealershipCreateResponse(
        dealership=DealershipResponse.model_validate(dealership),
        connections=ConnectionProvisioningReport(
            success=connections.success,
            ga4_created=connections.ga4_created,
            search_console_created=connections.search_console_created,
            errors=list(connections.errors),
            ga4_property_id=connections.ga4_property_id,
            search_console_url=connections.search_console_url,
        ),
    )


@router.get("/dealerships", response_model=DealershipListResponse)
async def list_dealerships(
    agency_id: str | None = Query(None, alias="agencyId"),
    db: AsyncSession = Depends(get_read_db),
    _admin: User = Depends(require_super_admin),
) -> DealershipListResponse:
    dealerships = await DealershipService(db).list_dealerships(agency_id)
    return DealershipListResponse(dealerships=dealerships, total=len(dealerships))


# ============================================================================
# Packages
# ============================================================================


@router.get("/dealerships/{dealership_id}/package", response_model=PackageResponse)
async def get_package(
    dealership_id: str,
    db: AsyncSession = Depends(get_read_db),
    user: User = Depends(get_current_user),
) -> PackageResponse:
    service = DealershipService(db)
    try:
        dealership, usage = await service.get_package(dealership_id)
    except DealershipNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    _require_package_admin(user, dealership)
    return _package_response(dealership, usage)


@router.put("/dealerships/{dealership_id}/package", response_model=PackageResponse)
async def update_package(
    dealership_id: str,
    request: PackageUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
    user: User = Depends(get_current_user),
) -> PackageResponse:
    """Change the package. A different package resets the period's usage."""
    service = DealershipService(db)
    try:
        dealership = await service.get_dealership(dealership_id)
        _require_package_admin(user, dealership)
        dealership, usage = await service.update_package(dealership_id, request.package_type)
    except DealershipNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    logger.info(
        "package_updated",
        user_id=user.id,
        dealership_id=dealership_id,
        package=request.package_type.value,
    )
    return _package_response(dealership, usage)
