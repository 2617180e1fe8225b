"""
Dealership Connection Service - Creates GA4 / Search Console connection stubs.

When a dealership with a known property mapping is created, placeholder
connection rows (no tokens) are owned by a super admin so the dealership is
immediately resolvable. Failures are collected into the report and never
raised to the caller.
"""

from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import GA4Connection, SearchConsoleConnection, User
from app.models.api import UserRole
from app.models.domain import ConnectionProvisioningResult, DealershipPropertyMapping
from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.services.property_mapping import PropertyMappingRegistry, get_property_mappings

logger = get_logger(__name__)

STUB_CONNECTION_LIFETIME = timedelta(days=365)


class DealershipConnectionService:
    """Provisions analytics connections for newly created dealerships."""

    def __init__(
        self, session: AsyncSession, mappings: PropertyMappingRegistry | None = None
    ) -> None:
        self.session = session
        self.mappings = mappings or get_property_mappings()

    async def create_connections_for_dealership(
        self, dealership_id: str, dealership_name: str
    ) -> ConnectionProvisioningResult:
        """
        Create missing GA4 / Search Console stubs for a dealership.

        The mapping is looked up by dealership ID, then by name.
        """
        mapping = self.mappings.find(dealership_id, dealership_name)
        if mapping is None:
            logger.info(
                "no_property_mapping_for_dealership",
                dealership_id=dealership_id,
                dealership_name=dealership_name,
            )
            return ConnectionProvisioningResult(
                success=False,
                ga4_created=False,
                search_console_created=False,
                errors=(f"No property mapping found for dealership {dealership_name}",),
            )

        try:
            system_user = await self._find_system_user()
        except SQLAlchemyError as exc:
            logger.error(
                "connection_provisioning_failed", dealership_id=dealership_id, error=str(exc)
            )
            return self._result(mapping, False, False, [f"Failed to load system user: {exc}"])

        if system_user is None:
            return self._result(
                mapping, False, False, ["No super admin user found to own connections"]
            )

        # Plain value; a rollback below expires ORM instances
        owner_id = system_user.id
        errors: list[str] = []
        ga4_created = False
        search_console_created = False
        expires_at = datetime.now(UTC) + STUB_CONNECTION_LIFETIME

        if mapping.has_ga4_access:
            try:
                ga4_created = await self._create_ga4_stub(
                    owner_id, dealership_id, dealership_name, mapping, expires_at
                )
            except SQLAlchemyError as exc:
                await self.session.rollback()
                errors.append(f"Failed to create GA4 connection: {exc}")
                logger.error(
                    "ga4_connection_provisioning_failed",
                    dealership_id=dealership_id,
                    property_id=mapping.ga4_property_id,
                    error=str(exc),
                )

        if mapping.search_console_url:
            try:
                search_console_created = await self._create_search_console_stub(
                    owner_id, dealership_id, dealership_name, mapping, expires_at
                )
            except SQLAlchemyError as exc:
                await self.session.rollback()
                errors.append(f"Failed to create Search Console connection: {exc}")
                logger.error(
                    "search_console_connection_provisioning_failed",
                    dealership_id=dealership_id,
                    site_url=mapping.search_console_url,
                    error=str(exc),
                )

        logger.info(
            "dealership_connections_provisioned",
            dealership_id=dealership_id,
            ga4_created=ga4_created,
            search_console_created=search_console_created,
            errors=len(errors),
        )
        return self._result(mapping, ga4_created, search_console_created, errors)

    async def _create_ga4_stub(
        self,
        owner_id: str,
        dealership_id: str,
        dealership_name: str,
        mapping: DealershipPropertyMapping,
        expires_at: datetime,
    ) -> bool:
        existing = await self.session.execute(
            select(GA4Connection.id)
            .where(
                GA4Connection.dealership_id == dealership_id,
                GA4Connection.property_id == mapping.ga4_property_id,
            )
            .limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            return False

        self.session.add(
            GA4Connection(
                user_id=owner_id,
                dealership_id=dealership_id,
                property_id=mapping.ga4_property_id,
                property_name=f"{dealership_name} - GA4",
                access_token="",
                refresh_token=None,
                expires_at=expires_at,
            )
        )
        await self.session.commit()
        metrics.record_connection_provisioned("ga4")
        return True

    async def _create_search_console_stub(
        self,
        owner_id: str,
        dealership_id: str,
        dealership_name: str,
        mapping: DealershipPropertyMapping,
        expires_at: datetime,
    ) -> bool:
        existing = await self.session.execute(
            select(SearchConsoleConnection.id)
            .where(
                SearchConsoleConnection.dealership_id == dealership_id,
                SearchConsoleConnection.site_url == mapping.search_console_url,
            )
            .limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            return False

        self.session.add(
            SearchConsoleConnection(
                user_id=owner_id,
                dealership_id=dealership_id,
                site_url=mapping.search_console_url,
                site_name=f"{dealership_name} - Search Console",
                access_token="",
                refresh_token=None,
                expires_at=expires_at,
            )
        )
        await self.session.commit()
        metrics.record_connection_provisioned("search_console")
        return True

    async def _find_system_user(self) -> User | None:
        result = await self.session.execute(
            select(User)
            .where(User.role == UserRole.SUPER_ADMIN.value)
            .order_by(User.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _result(
        mapping: DealershipPropertyMapping,
        ga4_created: bool,
        search_console_created: bool,
        errors: list[str],
    ) -> ConnectionProvisioningResult:
        return ConnectionProvisioningResult(
            success=not errors,
            ga4_created=ga4_created,
            search_console_created=search_console_created,
            errors=tuple(errors),
            ga4_property_id=mapping.ga4_property_id,
            search_console_url=mapping.search_console_url,
        )
