"""
Property Resolver - Decides which GA4 property / Search Console site to query.

Resolution order, identical for both kinds:
1. The dealership's static mapping, when the mapping grants access and the
   user holds a connection to that exact property or site.
2. The user's own connection (dealership-scoped rows before user-level rows).
3. Nothing.

A mapped dealership is never answered with someone's personal property.
"""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Dealership, GA4Connection, SearchConsoleConnection, User
from app.models.api import PropertySource
from app.models.domain import AvailableProperty, PropertyResolution
from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.services.property_mapping import PropertyMappingRegistry, get_property_mappings

logger = get_logger(__name__)


def normalize_url(url: str) -> str:
    """Canonical form for comparing site URLs: explicit scheme, no trailing slash."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


class PropertyResolver:
    """Resolves (dealership, user) pairs to analytics identifiers."""

    def __init__(
        self, session: AsyncSession, mappings: PropertyMappingRegistry | None = None
    ) -> None:
        self.session = session
        self.mappings = mappings or get_property_mappings()

    # ========================================================================
    # GA4
    # ========================================================================

    async def resolve_ga4_property(
        self, dealership_id: str | None, user_id: str
    ) -> PropertyResolution:
        try:
            resolution = await self._resolve_ga4_property(dealership_id, user_id)
        except SQLAlchemyError as exc:
            logger.error(
                "property_resolution_failed",
                kind="ga4",
                dealership_id=dealership_id,
                user_id=user_id,
                error=str(exc),
            )
            metrics.record_error(type(exc).__name__, "resolve_ga4_property")
            resolution = PropertyResolution.none()

        metrics.record_property_resolution("ga4", resolution.source.value)
        return resolution

    async def _resolve_ga4_property(
        self, dealership_id: str | None, user_id: str
    ) -> PropertyResolution:
        if dealership_id:
            mapping = self.mappings.get(dealership_id)
            if mapping is not None and mapping.has_ga4_access:
                connection = await self._find_ga4_connection_for_property(
                    user_id, mapping.ga4_property_id
                )
                if connection is not None:
                    logger.debug(
                        "ga4_property_resolved",
                        dealership_id=dealership_id,
                        property_id=mapping.ga4_property_id,
                        source=PropertySource.DEALERSHIP_MAPPING.value,
                    )
                    return PropertyResolution(
                        source=PropertySource.DEALERSHIP_MAPPING,
                        has_access=True,
                        property_id=mapping.ga4_property_id,
                    )
                logger.warning(
                    "mapped_ga4_property_without_connection",
                    dealership_id=dealership_id,
                    property_id=mapping.ga4_property_id,
                    user_id=user_id,
                )

        connection = await self._find_user_ga4_connection(user_id, dealership_id)
        if connection is not None and connection.property_id:
            return PropertyResolution(
                source=PropertySource.USER_CONNECTION,
                has_access=True,
                property_id=connection.property_id,
            )

        return PropertyResolution.none()

    # ========================================================================
    # Search Console
    # ========================================================================

    async def resolve_search_console_url(
        self, dealership_id: str | None, user_id: str
    ) -> PropertyResolution:
        try:
            resolution = await self._resolve_search_console_url(dealership_id, user_id)
        except SQLAlchemyError as exc:
            logger.error(
                "property_resolution_failed",
                kind="search_console",
                dealership_id=dealership_id,
                user_id=user_id,
                error=str(exc),
            )
            metrics.record_error(type(exc).__name__, "resolve_search_console_url")
            resolution = PropertyResolution.none()

        metrics.record_property_resolution("search_console", resolution.source.value)
        return resolution

    async def _resolve_search_console_url(
        self, dealership_id: str | None, user_id: str
    ) -> PropertyResolution:
        if dealership_id:
            mapped_url = self.mappings.get_search_console_url(dealership_id)
            if mapped_url:
                connection = await self._find_search_console_connection_for_site(
                    user_id, mapped_url
                )
                if connection is not None:
                    return PropertyResolution(
                        source=PropertySource.DEALERSHIP_MAPPING,
                        has_access=True,
                        site_url=mapped_url,
                    )
                logger.warning(
                    "mapped_search_console_site_without_connection",
                    dealership_id=dealership_id,
                    site_url=mapped_url,
                    user_id=user_id,
                )

        connection = await self._find_user_search_console_connection(user_id, dealership_id)
        if connection is not None and connection.site_url:
            return PropertyResolution(
                source=PropertySource.USER_CONNECTION,
                has_access=True,
                site_url=connection.site_url,
            )

        return PropertyResolution.none()

    # ========================================================================
    # Listing
    # ========================================================================

    async def get_all_available_properties(self, user_id: str) -> list[AvailableProperty]:
        """
        Every GA4 property and Search Console site the user can report on.

        Mapped properties of the dealerships in the user's agency come first,
        but only where the user holds a connection to them; the user's other
        connections follow. A database error is logged and whatever was
        collected before it is returned.
        """
        found: dict[tuple[str, str], AvailableProperty] = {}
        try:
            await self._collect_available_properties(user_id, found)
        except SQLAlchemyError as exc:
            logger.error("available_properties_failed", user_id=user_id, error=str(exc))
            metrics.record_error(type(exc).__name__, "get_all_available_properties")
        return list(found.values())

    async def _collect_available_properties(
        self, user_id: str, found: dict[tuple[str, str], AvailableProperty]
    ) -> None:
        def add(item: AvailableProperty) -> None:
            identifier = item.identifier
            if item.kind == "search_console":
                identifier = normalize_url(identifier)
            found.setdefault((item.kind, identifier), item)

        for dealership in await self._find_agency_dealerships(user_id):
            mapping = self.mappings.find(dealership.id, dealership.name)
            if mapping is None:
                continue
            if mapping.has_ga4_access and await self._find_ga4_connection_for_property(
                user_id, mapping.ga4_property_id
            ):
                add(
                    AvailableProperty(
                        kind="ga4",
                        identifier=mapping.ga4_property_id,
                        name=mapping.dealership_name,
                        source=PropertySource.DEALERSHIP_MAPPING,
                        dealership_id=dealership.id,
                    )
                )
            if mapping.search_console_url and await self._find_search_console_connection_for_site(
                user_id, mapping.search_console_url
            ):
                add(
                    AvailableProperty(
                        kind="search_console",
                        identifier=mapping.search_console_url,
                        name=mapping.dealership_name,
                        source=PropertySource.DEALERSHIP_MAPPING,
                        dealership_id=dealership.id,
                    )
                )

        ga4_rows = await self.session.execute(
            select(GA4Connection).where(
                GA4Connection.user_id == user_id, GA4Connection.property_id.isnot(None)
            )
        )
        for connection in ga4_rows.scalars().all():
            add(
                AvailableProperty(
                    kind="ga4",
                    identifier=connection.property_id,
                    name=connection.property_name,
                    source=PropertySource.USER_CONNECTION,
                    dealership_id=connection.dealership_id,
                )
            )

        sc_rows = await self.session.execute(
            select(SearchConsoleConnection).where(
                SearchConsoleConnection.user_id == user_id,
                SearchConsoleConnection.site_url.isnot(None),
            )
        )
        for connection in sc_rows.scalars().all():
            add(
                AvailableProperty(
                    kind="search_console",
                    identifier=connection.site_url,
                    name=connection.site_name,
                    source=PropertySource.USER_CONNECTION,
                    dealership_id=connection.dealership_id,
                )
            )

    # ========================================================================
    # Queries
    # ========================================================================

    async def _find_ga4_connection_for_property(
        self, user_id: str, property_id: str | None
    ) -> GA4Connection | None:
        stmt = (
            select(GA4Connection)
            .where(GA4Connection.user_id == user_id, GA4Connection.property_id == property_id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_user_ga4_connection(
        self, user_id: str, dealership_id: str | None
    ) -> GA4Connection | None:
        """Dealership-scoped row for this dealership first, then the user-level row."""
        scope = GA4Connection.dealership_id.is_(None)
        if dealership_id:
            scope = scope | (GA4Connection.dealership_id == dealership_id)
        stmt = (
            select(GA4Connection)
            .where(GA4Connection.user_id == user_id, GA4Connection.property_id.isnot(None), scope)
            .order_by(GA4Connection.dealership_id.is_(None), GA4Connection.updated_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_search_console_connection_for_site(
        self, user_id: str, site_url: str
    ) -> SearchConsoleConnection | None:
        # Site URLs are stored inconsistently (trailing slash, scheme); compare normalised
        stmt = select(SearchConsoleConnection).where(
            SearchConsoleConnection.user_id == user_id,
            SearchConsoleConnection.site_url.isnot(None),
        )
        result = await self.session.execute(stmt)
        wanted = normalize_url(site_url)
        for connection in result.scalars().all():
            if normalize_url(connection.site_url) == wanted:
                return connection
        return None

    async def _find_user_search_console_connection(
        self, user_id: str, dealership_id: str | None
    ) -> SearchConsoleConnection | None:
        scope = SearchConsoleConnection.dealership_id.is_(None)
        if dealership_id:
            scope = scope | (SearchConsoleConnection.dealership_id == dealership_id)
        stmt = (
            select(SearchConsoleConnection)
            .where(
                SearchConsoleConnection.user_id == user_id,
                SearchConsoleConnection.site_url.isnot(None),
                scope,
            )
            .order_by(
                SearchConsoleConnection.dealership_id.is_(None),
                SearchConsoleConnection.updated_at.desc(),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_agency_dealerships(self, user_id: str) -> list[Dealership]:
        stmt = (
            select(Dealership)
            .join(User, User.agency_id == Dealership.agency_id)
            .where(User.id == user_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
