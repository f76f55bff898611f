import pytest
import pytest_asyncio

from conftest import make_decode
from services.canonical_registry import CanonicalRegistry
from services.exceptions import AccessDenied, GrantNotFound, InvalidGrant, InvalidStateTransition, VehicleNotFound
from services.shared_access import SharedAccessManager
from services.tenant_binder import TenantVehicleBinder
from vin.normalizer import normalize

VIN = "1HGCM82633A004352"


@pytest_asyncio.fixture
async def held_vehicle(async_db_session):
    """A vehicle held by tenant-a with a mileage reading."""
    created = await CanonicalRegistry(async_db_session).find_or_create(
        normalize(VIN), make_decode(year=2003, make="Honda", model="Accord")
    )
    vehicle_id = created.canonical_vehicle.id
    await TenantVehicleBinder(async_db_session).attach("tenant-a", vehicle_id, mileage=88000)
    return vehicle_id


@pytest.fixture
def manager(async_db_session):
    return SharedAccessManager(async_db_session)


@pytest.mark.asyncio
async def test_grant_creates_pending_request(manager, held_vehicle):
    result = await manager.grant(held_vehicle, "tenant-a", "tenant-b", "read_only")

    assert result.created is True
    assert result.grant.status == "pending"
    assert result.grant.scope == "read_only"
    assert result.grant.granting_tenant_id == "tenant-a"
    assert result.grant.grantee_tenant_id == "tenant-b"


@pytest.mark.asyncio
async def test_grant_to_self_is_invalid(manager, held_vehicle):
    with pytest.raises(InvalidGrant):
        await manager.grant(held_vehicle, "tenant-a", "tenant-a")


@pytest.mark.asyncio
async def test_grant_with_unknown_scope_is_invalid(manager, held_vehicle):
    with pytest.raises(InvalidGrant):
        await manager.grant(held_vehicle, "tenant-a", "tenant-b", "admin")


@pytest.mark.asyncio
async def test_grant_requires_holding_the_vehicle(manager, held_vehicle):
    with pytest.raises(AccessDenied):
        await manager.grant(held_vehicle, "tenant-c", "tenant-b")


@pytest.mark.asyncio
async def test_grant_for_unknown_vehicle(manager):
    with pytest.raises(VehicleNotFound):
        await manager.grant(999, "tenant-a", "tenant-b")


@pytest.mark.asyncio
async def test_repeated_grant_updates_scope_in_place(manager, held_vehicle):
    first = await manager.grant(held_vehicle, "tenant-a", "tenant-b", "read_only")

    second = await manager.grant(held_vehicle, "tenant-a", "tenant-b", "full_history")

    assert second.created is False
    assert second.grant.id == first.grant.id
    assert second.grant.scope == "full_history"
    assert len(await manager.list_grants("tenant-b")) == 1


@pytest.mark.asyncio
async def test_accept_then_revoke(manager, held_vehicle):
    grant = (await manager.grant(held_vehicle, "tenant-a", "tenant-b")).grant

    accepted = await manager.accept(grant.id)
    assert accepted.status == "active"
    assert accepted.responded_at is not None

    revoked = await manager.revoke(grant.id)
    assert revoked.status == "revoked"
    assert revoked.revoked_at is not None


@pytest.mark.asyncio
async def test_reject_pending_grant(manager, held_vehicle):
    grant = (await manager.grant(held_vehicle, "tenant-a", "tenant-b")).grant

    rejected = await manager.reject(grant.id)

    assert rejected.status == "revoked"
    assert rejected.responded_at is not None


@pytest.mark.asyncio
async def test_reject_active_grant_is_invalid(manager, held_vehicle):
    grant = (await manager.grant(held_vehicle, "tenant-a", "tenant-b")).grant
    await manager.accept(grant.id)

    with pytest.raises(InvalidStateTransition) as exc_info:
        await manager.reject(grant.id)

    assert exc_info.value.current == "active"
    assert exc_info.value.requested == "revoked"


@pytest.mark.asyncio
async def test_revoked_grant_is_terminal(manager, held_vehicle):
    grant = (await manager.grant(held_vehicle, "tenant-a", "tenant-b")).grant
    await manager.revoke(grant.id)

    with pytest.raises(InvalidStateTransition):
        await manager.accept(grant.id)
    with pytest.raises(InvalidStateTransition):
        await manager.revoke(grant.id)


@pytest.mark.asyncio
async def test_new_request_after_revocation_creates_new_row(manager, held_vehicle):
    old = (await manager.grant(held_vehicle, "tenant-a", "tenant-b")).grant
    await manager.revoke(old.id)

    fresh = await manager.grant(held_vehicle, "tenant-a", "tenant-b")

    assert fresh.created is True
    assert fresh.grant.id != old.id
    assert (await manager.get_grant(old.id)).status == "revoked"
    all_grants = await manager.list_grants("tenant-b", include_revoked=True)
    assert [g.id for g in all_grants] == [old.id, fresh.grant.id]


@pytest.mark.asyncio
async def test_unknown_grant(manager):
    with pytest.raises(GrantNotFound):
        await manager.accept(42)


@pytest.mark.asyncio
async def test_list_grants_by_direction(manager, held_vehicle):
    grant = (await manager.grant(held_vehicle, "tenant-a", "tenant-b")).grant

    assert [g.id for g in await manager.list_grants("tenant-b", "incoming")] == [grant.id]
    assert await manager.list_grants("tenant-b", "outgoing") == []
    assert [g.id for g in await manager.list_grants("tenant-a", "outgoing")] == [grant.id]
    assert [g.id for g in await manager.list_grants("tenant-a", "all")] == [grant.id]

    with pytest.raises(InvalidGrant):
        await manager.list_grants("tenant-a", "sideways")


@pytest.mark.asyncio
async def test_shared_view_requires_active_grant(manager, held_vehicle):
    await manager.grant(held_vehicle, "tenant-a", "tenant-b")

    with pytest.raises(AccessDenied):
        await manager.get_shared_view(held_vehicle, "tenant-b")


@pytest.mark.asyncio
async def test_read_only_view_hides_history(manager, held_vehicle):
    grant = (await manager.grant(held_vehicle, "tenant-a", "tenant-b", "read_only")).grant
    await manager.accept(grant.id)

    view = await manager.get_shared_view(held_vehicle, "tenant-b")

    assert view.canonical_vehicle.make == "Honda"
    assert view.grantor_mileage == 88000
    assert view.history == []


@pytest.mark.asyncio
async def test_full_history_view_includes_grantor_ledger(manager, held_vehicle):
    grant = (await manager.grant(held_vehicle, "tenant-a", "tenant-b", "full_history")).grant
    await manager.accept(grant.id)

    view = await manager.get_shared_view(held_vehicle, "tenant-b")

    assert [(e.tenant_id, e.event_type) for e in view.history] == [("tenant-a", "acquired")]


@pytest.mark.asyncio
async def test_release_revokes_outgoing_grants(manager, held_vehicle, async_db_session):
    binder = TenantVehicleBinder(async_db_session)
    active = (await manager.grant(held_vehicle, "tenant-a", "tenant-b", "full_history")).grant
    await manager.accept(active.id)
    pending = (await manager.grant(held_vehicle, "tenant-a", "tenant-c")).grant

    instance = await binder.active_instance("tenant-a", held_vehicle)
    await binder.release(instance.id)

    assert (await manager.get_grant(active.id)).status == "revoked"
    assert (await manager.get_grant(active.id)).revoked_at is not None
    assert (await manager.get_grant(pending.id)).status == "revoked"
    with pytest.raises(AccessDenied):
        await manager.get_shared_view(held_vehicle, "tenant-b")


@pytest.mark.asyncio
async def test_transfer_revokes_sender_grants(manager, held_vehicle, async_db_session):
    binder = TenantVehicleBinder(async_db_session)
    grant = (await manager.grant(held_vehicle, "tenant-a", "tenant-b", "full_history")).grant
    await manager.accept(grant.id)

    instance = await binder.active_instance("tenant-a", held_vehicle)
    await binder.transfer(instance.id, "tenant-c")

    assert (await manager.get_grant(grant.id)).status == "revoked"
    with pytest.raises(AccessDenied):
        await manager.get_shared_view(held_vehicle, "tenant-b")


@pytest.mark.asyncio
async def test_release_keeps_grants_of_other_holders(manager, held_vehicle, async_db_session):
    binder = TenantVehicleBinder(async_db_session)
    await binder.attach("tenant-d", held_vehicle, mileage=90000)
    kept = (await manager.grant(held_vehicle, "tenant-d", "tenant-b")).grant

    instance = await binder.active_instance("tenant-a", held_vehicle)
    await binder.release(instance.id)

    assert (await manager.get_grant(kept.id)).status == "pending"
