"""
Dealership Service - Super admin dealership administration.

Creating a dealership also provisions its GA4 / Search Console connections
from the property mapping. Provisioning problems are reported alongside the
new dealership and never undo its creation.
"""

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Agency, Dealership, User, new_id
from app.exceptions import AgencyNotFoundError, DealershipNotFoundError, DuplicateClientIdError
from app.models.api import DealershipCreateRequest, DealershipListItem, PackageType
from app.models.domain import ConnectionProvisioningResult, UsageSnapshot
from app.observability.logging import get_logger
from app.services.connection_provisioning import DealershipConnectionService
from app.services.package_usage import PackageUsageService
from app.services.property_mapping import PropertyMappingRegistry

logger = get_logger(__name__)

# Request fields stored on the dealership's settings JSON
_SETTINGS_FIELDS = (
    "main_brand",
    "other_brand",
    "contact_name",
    "contact_title",
    "email",
    "billing_email",
    "site_access_notes",
    "target_vehicle_models",
    "target_cities",
    "target_dealers",
    "notes",
)


class DealershipService:
    """Dealership CRUD plus package administration."""

    def __init__(
        self, session: AsyncSession, mappings: PropertyMappingRegistry | None = None
    ) -> None:
        self.session = session
        self.mappings = mappings
        self.usage = PackageUsageService(session)

    async def create_dealership(
        self, request: DealershipCreateRequest
    ) -> tuple[Dealership, ConnectionProvisioningResult]:
        """
        Create a dealership and provision its analytics connections.

        Raises:
            AgencyNotFoundError: agency_id does not exist
            DuplicateClientIdError: client_id is already used by another dealership
        """
        agency = await self.session.get(Agency, request.agency_id)
        if agency is None:
            raise AgencyNotFoundError(request.agency_id)

        if request.client_id and await self._client_id_taken(request.client_id):
            raise DuplicateClientIdError(request.client_id)

        settings = {
            field: value
            for field in _SETTINGS_FIELDS
            if (value := getattr(request, field)) not in (None, [], "")
        }
        dealership = Dealership(
            id=request.id or new_id(),
            name=request.name,
            agency_id=request.agency_id,
            website=request.website,
            address=request.address,
            city=request.city,
            state=request.state,
            zip_code=request.zip_code,
            phone=request.phone,
            client_id=request.client_id,
            pages_used_this_period=0,
            blogs_used_this_period=0,
            gbp_posts_used_this_period=0,
            improvements_used_this_period=0,
            settings=settings,
        )
        self.session.add(dealership)
        await self.usage.change_package(dealership, request.active_package_type)

        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if request.client_id:
                raise DuplicateClientIdError(request.client_id) from exc
            raise

        # Plain values; provisioning may roll back and expire the instance
        dealership_id = dealership.id
        dealership_name = dealership.name
        logger.info(
            "dealership_created",
            dealership_id=dealership_id,
            agency_id=request.agency_id,
            package=request.active_package_type.value,
        )

        connections = await DealershipConnectionService(
            self.session, self.mappings
        ).create_connections_for_dealership(dealership_id, dealership_name)
        if not connections.success:
            logger.warning(
                "dealership_connections_incomplete",
                dealership_id=dealership_id,
                errors=list(connections.errors),
            )

        refreshed = await self.session.get(Dealership, dealership_id)
        return refreshed or dealership, connections

    async def list_dealerships(self, agency_id: str | None = None) -> list[DealershipListItem]:
        """All dealerships (optionally one agency's) with agency name and user count."""
        user_counts = (
            select(User.dealership_id, func.count(User.id).label("user_count"))
            .where(User.dealership_id.isnot(None))
            .group_by(User.dealership_id)
            .subquery()
        )
        stmt = (
            select(Dealership, Agency.name, func.coalesce(user_counts.c.user_count, 0))
            .outerjoin(Agency, Agency.id == Dealership.agency_id)
            .outerjoin(user_counts, user_counts.c.dealership_id == Dealership.id)
            .order_by(Dealership.name)
        )
        if agency_id:
            stmt = stmt.where(Dealership.agency_id == agency_id)

        result = await self.session.execute(stmt)
        return [
            DealershipListItem(
                id=dealership.id,
                name=dealership.name,
                website=dealership.website,
                agency_id=dealership.agency_id,
                agency_name=agency_name,
                client_id=dealership.client_id,
                active_package_type=dealership.active_package_type,
                user_count=user_count,
                created_at=dealership.created_at,
            )
            for dealership, agency_name, user_count in result.all()
        ]

    async def get_dealership(self, dealership_id: str) -> Dealership:
        dealership = await self.session.get(Dealership, dealership_id)
        if dealership is None:
            raise DealershipNotFoundError(dealership_id)
        return dealership

    async def get_package(self, dealership_id: str) -> tuple[Dealership, list[UsageSnapshot]]:
        dealership = await self.get_dealership(dealership_id)
        return dealership, self.usage.get_package_progress(dealership)

    async def update_package(
        self, dealership_id: str, package_type: PackageType
    ) -> tuple[Dealership, list[UsageSnapshot]]:
        """Switch the package; a real change resets the period's usage."""
        dealership = await self.get_dealership(dealership_id)
        changed = await self.usage.change_package(dealership, package_type)
        await self.session.commit()
        if changed:
            await self.session.refresh(dealership)
        return dealership, self.usage.get_package_progress(dealership)

    async def _client_id_taken(self, client_id: str) -> bool:
        result = await self.session.execute(
            select(Dealership.id).where(Dealership.client_id == client_id).limit(1)
        )
        return result.scalar_one_or_none() is not None
