"""
Tests for DealershipService.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.db.models import Agency, Dealership
from app.exceptions import AgencyNotFoundError, DealershipNotFoundError, DuplicateClientIdError
from app.models.api import DealershipCreateRequest, PackageType, TaskType
from app.models.domain import ConnectionProvisioningResult
from app.services.connection_provisioning import DealershipConnectionService
from app.services.dealerships import DealershipService
from app.services.property_mapping import PropertyMappingRegistry
from conftest import create_dealership, make_result

PROVISIONED = ConnectionProvisioningResult(
    success=True,
    ga4_created=True,
    search_console_created=True,
    ga4_property_id="284944578",
    search_console_url="https://www.acuracolumbus.com/",
)


@pytest.fixture
def service(db_session: AsyncMock, small_mappings: PropertyMappingRegistry) -> DealershipService:
    return DealershipService(db_session, small_mappings)


@pytest.fixture
def agency_store(db_store: dict) -> dict:
    agency = MagicMock(spec=Agency)
    agency.id = "agency-1"
    agency.name = "Rylie Agency"
    db_store[(Agency, "agency-1")] = agency
    return db_store


def provisioning_returning(result: ConnectionProvisioningResult):
    return patch.object(
        DealershipConnectionService,
        "create_connections_for_dealership",
        new_callable=AsyncMock,
        return_value=result,
    )


class TestCreateDealership:
    """Tests for dealership creation."""

    async def test_creates_and_provisions(
        self, service: DealershipService, db_session: AsyncMock, agency_store: dict
    ):
        request = DealershipCreateRequest(
            id="dealer-acura-columbus",
            name="Acura of Columbus",
            agency_id="agency-1",
            active_package_type=PackageType.PLATINUM,
            target_cities=["Columbus, OH"],
            main_brand="Acura",
        )

        with provisioning_returning(PROVISIONED) as provision:
            dealership, connections = await service.create_dealership(request)

        assert dealership.id == "dealer-acura-columbus"
        assert dealership.active_package_type == "PLATINUM"
        assert dealership.current_billing_period_end is not None
        assert dealership.settings == {"main_brand": "Acura", "target_cities": ["Columbus, OH"]}
        assert connections == PROVISIONED
        provision.assert_awaited_once_with("dealer-acura-columbus", "Acura of Columbus")
        db_session.add.assert_called_once_with(dealership)
        db_session.commit.assert_awaited_once()

    async def test_generates_id_when_missing(self, service: DealershipService, agency_store: dict):
        request = DealershipCreateRequest(name="Brand New Motors", agency_id="agency-1")
        failed = ConnectionProvisioningResult(
            success=False,
            ga4_created=False,
            search_console_created=False,
            errors=("No property mapping found for dealership Brand New Motors",),
        )

        with provisioning_returning(failed):
            dealership, connections = await service.create_dealership(request)

        assert dealership.id
        assert dealership.active_package_type == "GOLD"
        assert connections.success is False

    async def test_unknown_agency(self, service: DealershipService, db_session: AsyncMock):
        request = DealershipCreateRequest(name="Test Motors", agency_id="missing")

        with pytest.raises(AgencyNotFoundError):
            await service.create_dealership(request)
        db_session.add.assert_not_called()

    async def test_client_id_already_used(
        self, service: DealershipService, db_session: AsyncMock, agency_store: dict
    ):
        db_session.execute = AsyncMock(return_value=make_result(scalar="dealer-other"))
        request = DealershipCreateRequest(
            name="Test Motors", agency_id="agency-1", client_id="user_testmotors_columbus_2026"
        )

        with pytest.raises(DuplicateClientIdError):
            await service.create_dealership(request)
        db_session.add.assert_not_called()

    async def test_client_id_race_maps_to_duplicate(
        self, service: DealershipService, db_session: AsyncMock, agency_store: dict
    ):
        db_session.commit = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("uq_dealerships_client_id"))
        )
        request = DealershipCreateRequest(
            name="Test Motors", agency_id="agency-1", client_id="user_testmotors_columbus_2026"
        )

        with pytest.raises(DuplicateClientIdError):
            await service.create_dealership(request)
        db_session.rollback.assert_awaited_once()


class TestListDealerships:
    async def test_rows_become_list_items(self, service: DealershipService, db_session: AsyncMock):
        dealership = create_dealership(client_id="user_testmotors_columbus_2026")
        result = MagicMock()
        result.all = MagicMock(return_value=[(dealership, "Rylie Agency", 3)])
        db_session.execute = AsyncMock(return_value=result)

        items = await service.list_dealerships(agency_id="agency-1")

        assert len(items) == 1
        assert items[0].agency_name == "Rylie Agency"
        assert items[0].user_count == 3
        assert items[0].active_package_type == PackageType.GOLD


class TestPackage:
    """Tests for package reads and updates."""

    async def test_get_package(self, service: DealershipService, db_store: dict):
        db_store[(Dealership, "dealer-1")] = create_dealership(package="SILVER", blogs=2)

        dealership, usage = await service.get_package("dealer-1")

        by_type = {snapshot.task_type: snapshot for snapshot in usage}
        assert dealership.id == "dealer-1"
        assert by_type[TaskType.BLOG].used == 2
        assert by_type[TaskType.BLOG].limit == 4

    async def test_update_package_resets_usage(
        self, service: DealershipService, db_session: AsyncMock, db_store: dict
    ):
        dealership = create_dealership(package="SILVER", blogs=2)
        db_store[(Dealership, "dealer-1")] = dealership

        _, usage = await service.update_package("dealer-1", PackageType.GOLD)

        assert dealership.active_package_type == "GOLD"
        assert all(snapshot.used == 0 for snapshot in usage)
        db_session.commit.assert_awaited_once()
        db_session.refresh.assert_awaited_once_with(dealership)

    async def test_same_package_keeps_usage(
        self, service: DealershipService, db_session: AsyncMock, db_store: dict
    ):
        dealership = create_dealership(package="GOLD", blogs=2)
        db_store[(Dealership, "dealer-1")] = dealership

        await service.update_package("dealer-1", PackageType.GOLD)

        assert dealership.blogs_used_this_period == 2
        db_session.refresh.assert_not_awaited()

    async def test_unknown_dealership(self, service: DealershipService):
        with pytest.raises(DealershipNotFoundError):
            await service.get_package("missing")
