import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import fallback_decode, make_decode
from models.canonical_vehicle import CanonicalVehicle
from services.canonical_registry import CanonicalRegistry
from services.exceptions import MalformedInput, StorageUnavailable, VehicleNotFound
from vin.normalizer import normalize
from vin.types import DecodeSource

VIN = "1FTFW1ET2BFC10312"


async def count_vehicles(session) -> int:
    return (await session.execute(select(func.count()).select_from(CanonicalVehicle))).scalar_one()


@pytest.mark.asyncio
async def test_find_or_create_inserts_new_vehicle(async_db_session):
    registry = CanonicalRegistry(async_db_session)
    decode = make_decode(year=2011, make="Ford", model="F-150", trim="XLT")

    result = await registry.find_or_create(normalize(VIN), decode)

    assert result.created is True
    vehicle = result.canonical_vehicle
    assert vehicle.vin == VIN
    assert (vehicle.year, vehicle.make, vehicle.model, vehicle.trim) == (2011, "Ford", "F-150", "XLT")
    assert vehicle.decode_confidence == 100
    assert vehicle.decode_source == "oracle"
    assert vehicle.total_owners == 0
    assert vehicle.display_name == "2011 Ford F-150 XLT"


@pytest.mark.asyncio
async def test_find_or_create_returns_existing_row(async_db_session):
    registry = CanonicalRegistry(async_db_session)
    first = await registry.find_or_create(normalize(VIN), make_decode(make="Ford"))

    second = await registry.find_or_create(normalize(VIN.lower()), make_decode(make="Ford"))

    assert second.created is False
    assert second.canonical_vehicle.id == first.canonical_vehicle.id
    assert await count_vehicles(async_db_session) == 1


@pytest.mark.asyncio
async def test_more_confident_decode_enriches_existing_row(async_db_session):
    registry = CanonicalRegistry(async_db_session)
    await registry.find_or_create(normalize(VIN), fallback_decode())

    result = await registry.find_or_create(
        normalize(VIN), make_decode(confidence=100, year=2011, make="Ford", model="F-150")
    )

    vehicle = result.canonical_vehicle
    assert result.created is False
    assert vehicle.decode_source == "oracle"
    assert vehicle.decode_confidence == 100
    assert (vehicle.year, vehicle.model) == (2011, "F-150")
    # Unknown fields in the new decode keep their stored values
    assert (vehicle.year_range_start, vehicle.year_range_end) == (1981, 2011)
    assert vehicle.vin == VIN


@pytest.mark.asyncio
async def test_less_confident_decode_does_not_overwrite(async_db_session):
    registry = CanonicalRegistry(async_db_session)
    created = await registry.find_or_create(
        normalize(VIN), make_decode(confidence=100, year=2011, make="Ford", model="F-150")
    )

    enriched = await registry.enrich(created.canonical_vehicle.id, fallback_decode(make="Lincoln"))
    vehicle = await registry.get(created.canonical_vehicle.id)

    assert enriched is False
    assert vehicle.make == "Ford"
    assert vehicle.decode_confidence == 100


@pytest.mark.asyncio
async def test_confidence_never_decreases(async_db_session):
    registry = CanonicalRegistry(async_db_session)
    created = await registry.find_or_create(normalize(VIN), make_decode(confidence=30, make="Ford"))
    vehicle_id = created.canonical_vehicle.id

    highest = 30
    for confidence in [10, 50, 40, 90, 20, 90, 0]:
        await registry.enrich(vehicle_id, make_decode(source=DecodeSource.MANUAL, confidence=confidence, make="Ford"))
        highest = max(highest, confidence)
        vehicle = await registry.get(vehicle_id)
        assert vehicle.decode_confidence == highest


@pytest.mark.asyncio
async def test_structurally_invalid_vin_is_rejected(async_db_session):
    registry = CanonicalRegistry(async_db_session)

    with pytest.raises(MalformedInput) as exc_info:
        await registry.find_or_create(normalize("1HGCM8263OA004352"), make_decode())

    assert exc_info.value.offending == [(10, "O")]
    assert await count_vehicles(async_db_session) == 0


@pytest.mark.asyncio
async def test_get_unknown_vehicle(async_db_session):
    registry = CanonicalRegistry(async_db_session)

    with pytest.raises(VehicleNotFound):
        await registry.get(999)
    assert await registry.get_by_vin(VIN) is None


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_and_raises_retryable(mock_async_session):
    mock_async_session.get_bind = MagicMock(return_value=SimpleNamespace(dialect=SimpleNamespace(name="sqlite")))
    mock_async_session.execute.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))

    with pytest.raises(StorageUnavailable):
        await CanonicalRegistry(mock_async_session).find_or_create(normalize(VIN), make_decode())

    mock_async_session.rollback.assert_awaited_once()
    mock_async_session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_concurrent_find_or_create_yields_single_row(file_session_factory):
    """50 sessions race to register the same VIN; exactly one insert wins."""
    vin = normalize(VIN)

    async def register():
        async with file_session_factory() as session:
            return await CanonicalRegistry(session).find_or_create(vin, make_decode(make="Ford"))

    results = await asyncio.gather(*[register() for _ in range(50)])

    assert sum(1 for r in results if r.created) == 1
    assert len({r.canonical_vehicle.id for r in results}) == 1

    async with file_session_factory() as session:
        assert await count_vehicles(session) == 1
