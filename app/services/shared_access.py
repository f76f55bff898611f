import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from models.canonical_vehicle import CanonicalVehicle
from models.ownership_history import OwnershipHistoryEntry
from models.shared_access import GRANT_SCOPES, SharedAccessGrant
from services.exceptions import (
    AccessDenied,
    GrantNotFound,
    InvalidGrant,
    InvalidStateTransition,
    StorageUnavailable,
    VehicleNotFound,
)
from services.tenant_binder import TenantVehicleBinder

logger = logging.getLogger(__name__)

# status -> statuses it may move to; 'revoked' is terminal
ALLOWED_TRANSITIONS = {
    "pending": ("active", "revoked"),
    "active": ("revoked",),
    "revoked": (),
}


@dataclass
class GrantResult:
    grant: SharedAccessGrant
    created: bool


@dataclass
class SharedView:
    """What a grantee may see of another tenant's vehicle."""
    canonical_vehicle: CanonicalVehicle
    grant: SharedAccessGrant
    grantor_mileage: Optional[int] = None
    history: List[OwnershipHistoryEntry] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SharedAccessManager:
    """
    Cross-tenant visibility grants.

    State machine: pending -> active -> revoked, plus pending -> revoked when
    the grantee rejects. Every transition is a compare-and-set UPDATE on the
    current status, so two concurrent responses cannot both win. Revoked
    grants are kept for audit and never reactivated; a new request creates a
    new row.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.binder = TenantVehicleBinder(db)

    @track_performance(service_name="SharedAccessManager")
    async def grant(
        self,
        canonical_vehicle_id: int,
        from_tenant: str,
        to_tenant: str,
        scope: str = "read_only",
    ) -> GrantResult:
        """
        Requests access to a vehicle for another tenant.

        If the grantee already has a pending or active grant for this vehicle,
        that row's scope is updated instead of creating a second one. The
        partial unique index on (canonical_vehicle_id, grantee_tenant_id)
        WHERE status <> 'revoked' backs this up under concurrency.

        Args:
            canonical_vehicle_id (int): vehicle being shared
            from_tenant (str): tenant granting access, must hold the vehicle
            to_tenant (str): tenant receiving access
            scope (str): 'read_only' or 'full_history'

        Returns:
            GrantResult: the live grant and whether it was just created

        Raises:
            InvalidGrant: grantee is the grantor, or unknown scope
            AccessDenied: grantor holds no active instance of the vehicle
            VehicleNotFound: canonical vehicle does not exist
        """
        if from_tenant == to_tenant:
            raise InvalidGrant("A tenant cannot grant access to itself")
        if scope not in GRANT_SCOPES:
            raise InvalidGrant(f"Unknown scope '{scope}', expected one of {', '.join(GRANT_SCOPES)}")

        try:
            vehicle = (await self.db.execute(
                select(CanonicalVehicle.id).where(CanonicalVehicle.id == canonical_vehicle_id)
            )).scalar_one_or_none()
            if vehicle is None:
                raise VehicleNotFound(f"Canonical vehicle {canonical_vehicle_id} not found")
            if await self.binder.active_instance(from_tenant, canonical_vehicle_id) is None:
                raise AccessDenied(f"Tenant {from_tenant} does not hold vehicle {canonical_vehicle_id}")

            live = await self._live_grant(canonical_vehicle_id, to_tenant)
            if live is not None:
                await self._update_scope(live, from_tenant, scope)
                await self.db.commit()
                return GrantResult(grant=live, created=False)

            grant = SharedAccessGrant(
                canonical_vehicle_id=canonical_vehicle_id,
                granting_tenant_id=from_tenant,
                grantee_tenant_id=to_tenant,
                scope=scope,
                status="pending",
            )
            self.db.add(grant)
            await self.db.flush()
            await self.db.commit()
        except IntegrityError:
            # A concurrent request created the live grant first; update it instead
            await self.db.rollback()
            live = await self._live_grant(canonical_vehicle_id, to_tenant)
            if live is None:
                raise StorageUnavailable(f"Could not create grant for vehicle {canonical_vehicle_id}")
            await self._update_scope(live, from_tenant, scope)
            await self.db.commit()
            return GrantResult(grant=live, created=False)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable(f"Could not create grant for vehicle {canonical_vehicle_id}: {e}") from e

        await self.db.refresh(grant)
        logger.info(
            "Shared access requested",
            extra={
                "grant_id": grant.id,
                "canonical_vehicle_id": canonical_vehicle_id,
                "tenant_id": from_tenant,
                "grantee_tenant_id": to_tenant,
                "scope": scope,
            },
        )
        return GrantResult(grant=grant, created=True)

    async def accept(self, grant_id: int) -> SharedAccessGrant:
        return await self._transition(grant_id, "active", responded=True)

    async def reject(self, grant_id: int) -> SharedAccessGrant:
        return await self._transition(grant_id, "revoked", responded=True, expected=("pending",))

    async def revoke(self, grant_id: int) -> SharedAccessGrant:
        return await self._transition(grant_id, "revoked")

    async def get_grant(self, grant_id: int) -> SharedAccessGrant:
        try:
            grant = (await self.db.execute(
                select(SharedAccessGrant)
                .where(SharedAccessGrant.id == grant_id)
                .execution_options(populate_existing=True)
            )).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e
        if grant is None:
            raise GrantNotFound(f"Grant {grant_id} not found")
        return grant

    async def list_grants(
        self, tenant_id: str, direction: str = "incoming", include_revoked: bool = False
    ) -> List[SharedAccessGrant]:
        if direction == "incoming":
            condition = SharedAccessGrant.grantee_tenant_id == tenant_id
        elif direction == "outgoing":
            condition = SharedAccessGrant.granting_tenant_id == tenant_id
        elif direction == "all":
            condition = or_(
                SharedAccessGrant.grantee_tenant_id == tenant_id,
                SharedAccessGrant.granting_tenant_id == tenant_id,
            )
        else:
            raise InvalidGrant(f"Unknown direction '{direction}'")

        stmt = select(SharedAccessGrant).where(condition).order_by(SharedAccessGrant.id)
        if not include_revoked:
            stmt = stmt.where(SharedAccessGrant.status != "revoked")
        try:
            return list((await self.db.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e

    async def active_grant(self, canonical_vehicle_id: int, grantee_tenant_id: str) -> Optional[SharedAccessGrant]:
        return (await self.db.execute(
            select(SharedAccessGrant).where(
                SharedAccessGrant.canonical_vehicle_id == canonical_vehicle_id,
                SharedAccessGrant.grantee_tenant_id == grantee_tenant_id,
                SharedAccessGrant.status == "active",
            )
        )).scalar_one_or_none()

    @track_performance(service_name="SharedAccessManager")
    async def get_shared_view(self, canonical_vehicle_id: int, tenant_id: str) -> SharedView:
        """
        The grantor's side of a vehicle as seen by a grantee.

        `read_only` exposes the canonical summary and the grantor's current
        mileage; `full_history` adds the grantor's ownership ledger.
        """
        try:
            grant = await self.active_grant(canonical_vehicle_id, tenant_id)
            if grant is None:
                raise AccessDenied(f"Tenant {tenant_id} has no active grant for vehicle {canonical_vehicle_id}")

            vehicle = (await self.db.execute(
                select(CanonicalVehicle).where(CanonicalVehicle.id == canonical_vehicle_id)
            )).scalar_one()
            grantor_instance = await self.binder.active_instance(grant.granting_tenant_id, canonical_vehicle_id)
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e
        if grantor_instance is None:
            raise AccessDenied(f"Grantor of grant {grant.id} no longer holds vehicle {canonical_vehicle_id}")

        view = SharedView(
            canonical_vehicle=vehicle,
            grant=grant,
            grantor_mileage=grantor_instance.current_mileage,
        )
        if grant.scope == "full_history":
            view.history = await self.binder.history(canonical_vehicle_id, [grant.granting_tenant_id])
        return view

    async def _live_grant(self, canonical_vehicle_id: int, grantee_tenant_id: str) -> Optional[SharedAccessGrant]:
        return (await self.db.execute(
            select(SharedAccessGrant)
            .where(
                SharedAccessGrant.canonical_vehicle_id == canonical_vehicle_id,
                SharedAccessGrant.grantee_tenant_id == grantee_tenant_id,
                SharedAccessGrant.status != "revoked",
            )
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()

    async def _update_scope(self, grant: SharedAccessGrant, from_tenant: str, scope: str) -> None:
        grant.scope = scope
        grant.granting_tenant_id = from_tenant
        grant.updated_at = _utcnow()
        await self.db.flush()
        logger.info(
            "Shared access scope updated",
            extra={"grant_id": grant.id, "scope": scope, "status": grant.status},
        )

    @track_performance(service_name="SharedAccessManager")
    async def _transition(
        self,
        grant_id: int,
        to_status: str,
        responded: bool = False,
        expected: Optional[tuple] = None,
    ) -> SharedAccessGrant:
        grant = await self.get_grant(grant_id)
        current = grant.status
        allowed_from = expected or tuple(s for s, targets in ALLOWED_TRANSITIONS.items() if to_status in targets)
        if current not in allowed_from:
            raise InvalidStateTransition(
                f"Grant {grant_id} cannot move from '{current}' to '{to_status}'",
                current=current,
                requested=to_status,
            )

        now = _utcnow()
        values: Dict[str, Any] = {"status": to_status, "updated_at": now}
        if responded:
            values["responded_at"] = now
        if to_status == "revoked":
            values["revoked_at"] = now

        try:
            result = await self.db.execute(
                update(SharedAccessGrant)
                .where(SharedAccessGrant.id == grant_id, SharedAccessGrant.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                latest = await self.get_grant(grant_id)
                raise InvalidStateTransition(
                    f"Grant {grant_id} changed to '{latest.status}' concurrently",
                    current=latest.status,
                    requested=to_status,
                )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable(f"Could not update grant {grant_id}: {e}") from e

        prometheus_collector.record_grant_transition(current, to_status)
        logger.info(
            "Grant transitioned",
            extra={"grant_id": grant_id, "from_status": current, "to_status": to_status},
        )
        return await self.get_grant(grant_id)
