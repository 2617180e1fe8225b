"""
Tests for PropertyResolver.

Query helpers are patched so each test states exactly which connections the
user holds.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.db.models import Dealership, GA4Connection, SearchConsoleConnection
from app.models.api import PropertySource
from app.services.property_mapping import PropertyMappingRegistry
from app.services.property_resolver import PropertyResolver, normalize_url
from conftest import make_result


def ga4_connection(property_id: str, dealership_id: str | None = None) -> MagicMock:
    connection = MagicMock(spec=GA4Connection)
    connection.property_id = property_id
    connection.property_name = f"Property {property_id}"
    connection.dealership_id = dealership_id
    return connection


def sc_connection(site_url: str, dealership_id: str | None = None) -> MagicMock:
    connection = MagicMock(spec=SearchConsoleConnection)
    connection.site_url = site_url
    connection.site_name = site_url
    connection.dealership_id = dealership_id
    return connection


@pytest.fixture
def resolver(db_session: AsyncMock, small_mappings: PropertyMappingRegistry) -> PropertyResolver:
    return PropertyResolver(db_session, small_mappings)


class TestNormalizeUrl:
    def test_strips_trailing_slash(self):
        assert normalize_url("https://dealer.example/") == "https://dealer.example"

    def test_adds_scheme(self):
        assert normalize_url("dealer.example") == "https://dealer.example"

    def test_keeps_http(self):
        assert normalize_url("http://dealer.example/") == "http://dealer.example"


class TestResolveGA4Property:
    """GA4 resolution order: mapping, then user connection, then none."""

    async def test_mapped_dealership_wins_over_personal_connection(self, resolver: PropertyResolver):
        """Acura must get its own property even when the user also has Vinita's."""
        with (
            patch.object(
                resolver,
                "_find_ga4_connection_for_property",
                new_callable=AsyncMock,
                return_value=ga4_connection("284944578"),
            ),
            patch.object(
                resolver,
                "_find_user_ga4_connection",
                new_callable=AsyncMock,
                return_value=ga4_connection("320759942"),
            ) as user_lookup,
        ):
            result = await resolver.resolve_ga4_property("dealer-acura-columbus", "user-1")

        assert result.property_id == "284944578"
        assert result.property_id != "320759942"
        assert result.source == PropertySource.DEALERSHIP_MAPPING
        assert result.has_access is True
        user_lookup.assert_not_called()

    async def test_unmapped_dealership_uses_user_connection(self, resolver: PropertyResolver):
        with (
            patch.object(resolver, "_find_ga4_connection_for_property", new_callable=AsyncMock) as mapped,
            patch.object(
                resolver,
                "_find_user_ga4_connection",
                new_callable=AsyncMock,
                return_value=ga4_connection("320759942"),
            ),
        ):
            result = await resolver.resolve_ga4_property("dealer-nonexistent", "user-1")

        assert result.property_id == "320759942"
        assert result.source == PropertySource.USER_CONNECTION
        mapped.assert_not_called()

    async def test_no_dealership_uses_user_connection(self, resolver: PropertyResolver):
        with patch.object(
            resolver,
            "_find_user_ga4_connection",
            new_callable=AsyncMock,
            return_value=ga4_connection("320759942"),
        ) as user_lookup:
            result = await resolver.resolve_ga4_property(None, "user-1")

        assert result.property_id == "320759942"
        assert result.source == PropertySource.USER_CONNECTION
        user_lookup.assert_awaited_once_with("user-1", None)

    async def test_mapping_without_access_falls_back(self, resolver: PropertyResolver):
        """World Kia has no GA4 access, so only the user's connection can answer."""
        with (
            patch.object(resolver, "_find_ga4_connection_for_property", new_callable=AsyncMock) as mapped,
            patch.object(
                resolver,
                "_find_user_ga4_connection",
                new_callable=AsyncMock,
                return_value=ga4_connection("555000111", dealership_id="dealer-world-kia"),
            ),
        ):
            result = await resolver.resolve_ga4_property("dealer-world-kia", "user-1")

        assert result.property_id == "555000111"
        assert result.source == PropertySource.USER_CONNECTION
        mapped.assert_not_called()

    async def test_mapped_property_without_connection_falls_back(self, resolver: PropertyResolver):
        with (
            patch.object(
                resolver, "_find_ga4_connection_for_property", new_callable=AsyncMock, return_value=None
            ),
            patch.object(
                resolver,
                "_find_user_ga4_connection",
                new_callable=AsyncMock,
                return_value=ga4_connection("999888777", dealership_id="dealer-jhc-columbus"),
            ),
        ):
            result = await resolver.resolve_ga4_property("dealer-jhc-columbus", "user-1")

        assert result.source == PropertySource.USER_CONNECTION
        assert result.property_id == "999888777"

    async def test_nothing_found_returns_none(self, resolver: PropertyResolver):
        with (
            patch.object(
                resolver, "_find_ga4_connection_for_property", new_callable=AsyncMock, return_value=None
            ),
            patch.object(
                resolver, "_find_user_ga4_connection", new_callable=AsyncMock, return_value=None
            ),
        ):
            result = await resolver.resolve_ga4_property("dealer-acura-columbus", "user-1")

        assert result.property_id is None
        assert result.source == PropertySource.NONE
        assert result.has_access is False

    async def test_database_error_degrades_to_none(self, resolver: PropertyResolver):
        with patch.object(
            resolver,
            "_find_ga4_connection_for_property",
            new_callable=AsyncMock,
            side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
        ):
            result = await resolver.resolve_ga4_property("dealer-acura-columbus", "user-1")

        assert result.source == PropertySource.NONE
        assert result.has_access is False


class TestResolveSearchConsoleUrl:
    """Search Console resolution follows the same order."""

    async def test_mapped_site_wins(self, resolver: PropertyResolver):
        with (
            patch.object(
                resolver,
                "_find_search_console_connection_for_site",
                new_callable=AsyncMock,
                return_value=sc_connection("https://www.acuracolumbus.com"),
            ),
            patch.object(
                resolver,
                "_find_user_search_console_connection",
                new_callable=AsyncMock,
                return_value=sc_connection("https://personal.example/"),
            ),
        ):
            result = await resolver.resolve_search_console_url("dealer-acura-columbus", "user-1")

        assert result.site_url == "https://www.acuracolumbus.com/"
        assert result.source == PropertySource.DEALERSHIP_MAPPING

    async def test_site_match_ignores_trailing_slash(self, resolver: PropertyResolver, db_session: AsyncMock):
        db_session.execute = AsyncMock(
            return_value=make_result(scalars=[sc_connection("https://www.acuracolumbus.com")])
        )
        connection = await resolver._find_search_console_connection_for_site(
            "user-1", "https://www.acuracolumbus.com/"
        )
        assert connection is not None

    async def test_falls_back_to_user_connection(self, resolver: PropertyResolver):
        with patch.object(
            resolver,
            "_find_user_search_console_connection",
            new_callable=AsyncMock,
            return_value=sc_connection("https://personal.example/"),
        ):
            result = await resolver.resolve_search_console_url("dealer-nonexistent", "user-1")

        assert result.site_url == "https://personal.example/"
        assert result.source == PropertySource.USER_CONNECTION

    async def test_database_error_degrades_to_none(self, resolver: PropertyResolver):
        with patch.object(
            resolver,
            "_find_user_search_console_connection",
            new_callable=AsyncMock,
            side_effect=OperationalError("SELECT", {}, Exception("timeout")),
        ):
            result = await resolver.resolve_search_console_url(None, "user-1")

        assert result.source == PropertySource.NONE
        assert result.site_url is None


class TestAvailableProperties:
    """Tests for listing everything a user can report on."""

    @pytest.fixture
    def acura(self) -> Dealership:
        return Dealership(id="dealer-acura-columbus", name="Acura of Columbus", agency_id="agency-1")

    async def test_mapped_property_requires_connection(
        self, resolver: PropertyResolver, db_session: AsyncMock, acura: Dealership
    ):
        db_session.execute = AsyncMock(
            side_effect=[
                make_result(scalars=[ga4_connection("320759942")]),
                make_result(scalars=[]),
            ]
        )
        with (
            patch.object(
                resolver, "_find_agency_dealerships", new_callable=AsyncMock, return_value=[acura]
            ),
            patch.object(
                resolver, "_find_ga4_connection_for_property", new_callable=AsyncMock, return_value=None
            ),
            patch.object(
                resolver,
                "_find_search_console_connection_for_site",
                new_callable=AsyncMock,
                return_value=sc_connection("https://www.acuracolumbus.com"),
            ),
        ):
            properties = await resolver.get_all_available_properties("user-1")

        by_key = {(p.kind, p.identifier): p for p in properties}
        assert ("ga4", "284944578") not in by_key
        assert by_key[("ga4", "320759942")].source == PropertySource.USER_CONNECTION
        site = by_key[("search_console", "https://www.acuracolumbus.com/")]
        assert site.source == PropertySource.DEALERSHIP_MAPPING
        assert site.dealership_id == "dealer-acura-columbus"

    async def test_connected_mapping_is_listed_once_as_mapping(
        self, resolver: PropertyResolver, db_session: AsyncMock, acura: Dealership
    ):
        db_session.execute = AsyncMock(
            side_effect=[
                make_result(scalars=[ga4_connection("284944578", "dealer-acura-columbus")]),
                make_result(scalars=[sc_connection("https://www.acuracolumbus.com")]),
            ]
        )
        with (
            patch.object(
                resolver, "_find_agency_dealerships", new_callable=AsyncMock, return_value=[acura]
            ),
            patch.object(
                resolver,
                "_find_ga4_connection_for_property",
                new_callable=AsyncMock,
                return_value=ga4_connection("284944578"),
            ),
            patch.object(
                resolver,
                "_find_search_console_connection_for_site",
                new_callable=AsyncMock,
                return_value=sc_connection("https://www.acuracolumbus.com"),
            ),
        ):
            properties = await resolver.get_all_available_properties("user-1")

        ga4 = [p for p in properties if p.kind == "ga4"]
        sites = [p for p in properties if p.kind == "search_console"]
        assert len(ga4) == 1
        assert ga4[0].source == PropertySource.DEALERSHIP_MAPPING
        assert len(sites) == 1
        assert sites[0].source == PropertySource.DEALERSHIP_MAPPING

    async def test_database_error_returns_partial_list(
        self, resolver: PropertyResolver, db_session: AsyncMock, acura: Dealership
    ):
        db_session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("timeout")))
        with (
            patch.object(
                resolver, "_find_agency_dealerships", new_callable=AsyncMock, return_value=[acura]
            ),
            patch.object(
                resolver,
                "_find_ga4_connection_for_property",
                new_callable=AsyncMock,
                return_value=ga4_connection("284944578"),
            ),
            patch.object(
                resolver,
                "_find_search_console_connection_for_site",
                new_callable=AsyncMock,
                return_value=None,
            ),
        ):
            properties = await resolver.get_all_available_properties("user-1")

        assert [(p.kind, p.identifier) for p in properties] == [("ga4", "284944578")]

    async def test_agency_lookup_error_returns_empty(self, resolver: PropertyResolver):
        with patch.object(
            resolver,
            "_find_agency_dealerships",
            new_callable=AsyncMock,
            side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
        ):
            properties = await resolver.get_all_available_properties("user-1")

        assert properties == []
