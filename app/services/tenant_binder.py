import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, update, exists
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import MAX_MILEAGE
from core.metrics import track_performance
from models.canonical_vehicle import CanonicalVehicle
from models.ownership_history import OwnershipHistoryEntry
from models.shared_access import SharedAccessGrant
from models.user_vehicle import UserVehicle
from services.exceptions import (
    AccessDenied,
    MalformedInput,
    MileageRegression,
    StorageUnavailable,
    VehicleNotFound,
)

logger = logging.getLogger(__name__)


@dataclass
class DuplicateInfo:
    """Summary of the instance already in the tenant's garage."""
    user_vehicle_id: int
    nickname: Optional[str]
    added_at: Optional[datetime]
    current_mileage: Optional[int]

    @classmethod
    def from_instance(cls, instance: UserVehicle) -> "DuplicateInfo":
        return cls(
            user_vehicle_id=instance.id,
            nickname=instance.nickname,
            added_at=instance.created_at,
            current_mileage=instance.current_mileage,
        )


@dataclass
class AttachResult:
    user_vehicle: UserVehicle
    duplicate: Optional[DuplicateInfo] = None
    first_time_owner: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_mileage(mileage: Optional[int]) -> None:
    if mileage is not None and not 0 <= mileage <= MAX_MILEAGE:
        raise MalformedInput(f"Mileage must be between 0 and {MAX_MILEAGE}, got {mileage}")


class TenantVehicleBinder:
    """
    Manages tenant-scoped vehicle instances and the ownership ledger.

    A tenant holds at most one active instance of a canonical vehicle. The
    partial unique index on (tenant_id, canonical_vehicle_id) WHERE is_active
    is what guarantees it; the lookup done before inserting only exists to
    answer with a friendly duplicate summary.

    Instances are deactivated, never deleted, and every activation or
    deactivation appends an OwnershipHistoryEntry in the same transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @track_performance(service_name="TenantVehicleBinder")
    async def attach(
        self,
        tenant_id: str,
        canonical_vehicle_id: int,
        mileage: Optional[int] = None,
        nickname: Optional[str] = None,
    ) -> AttachResult:
        """
        Adds a canonical vehicle to a tenant's garage.

        In one transaction: insert the UserVehicle, append an `acquired` ledger
        entry, and bump `total_owners` (in SQL) if the tenant never held this
        vehicle before. A returning owner does not inflate the count.

        Args:
            tenant_id (str): tenant adding the vehicle
            canonical_vehicle_id (int): canonical vehicle id
            mileage (int, optional): odometer reading at acquisition
            nickname (str, optional): tenant's label for the vehicle

        Returns:
            AttachResult: the new instance, or the existing active one with
                          `duplicate` set (no row is written in that case)

        Raises:
            VehicleNotFound: canonical vehicle does not exist
            StorageUnavailable: the transaction could not be completed
        """
        _check_mileage(mileage)
        try:
            existing = await self.active_instance(tenant_id, canonical_vehicle_id)
            if existing is not None:
                return self._duplicate(existing)

            await self._require_canonical(canonical_vehicle_id)
            instance, first_time = await self._insert_instance(
                tenant_id, canonical_vehicle_id, mileage, nickname
            )
            await self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent attach for the same tenant
            await self.db.rollback()
            existing = await self.active_instance(tenant_id, canonical_vehicle_id)
            if existing is None:
                raise StorageUnavailable(
                    f"Could not attach vehicle {canonical_vehicle_id} for tenant {tenant_id}"
                )
            return self._duplicate(existing)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable(f"Could not attach vehicle {canonical_vehicle_id}: {e}") from e

        logger.info(
            "Vehicle attached",
            extra={
                "tenant_id": tenant_id,
                "canonical_vehicle_id": canonical_vehicle_id,
                "user_vehicle_id": instance.id,
                "first_time_owner": first_time,
            },
        )
        return AttachResult(user_vehicle=instance, first_time_owner=first_time)

    @track_performance(service_name="TenantVehicleBinder")
    async def release(
        self,
        user_vehicle_id: int,
        event_type: str = "released",
        mileage: Optional[int] = None,
    ) -> UserVehicle:
        """
        Deactivates an instance and appends `event_type` to the ledger.

        Releasing an instance that is already released is a no-op.
        """
        _check_mileage(mileage)
        try:
            instance = await self.get_instance(user_vehicle_id)
            if instance.is_active:
                await self._deactivate(instance, event_type, mileage)
                await self.db.commit()
                await self.db.refresh(instance)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable(f"Could not release vehicle instance {user_vehicle_id}: {e}") from e
        return instance

    @track_performance(service_name="TenantVehicleBinder")
    async def transfer(
        self,
        user_vehicle_id: int,
        to_tenant_id: str,
        mileage: Optional[int] = None,
        nickname: Optional[str] = None,
    ) -> AttachResult:
        """
        Hands an active instance over to another tenant in one transaction:
        `transferred` for the sender, `acquired` for the receiver.

        If the receiver already holds the vehicle, nothing is written and the
        receiver's instance comes back as `duplicate`.
        """
        _check_mileage(mileage)
        try:
            source = await self.get_instance(user_vehicle_id)
            canonical_vehicle_id = source.canonical_vehicle_id
            if not source.is_active:
                raise AccessDenied(f"Vehicle instance {user_vehicle_id} is no longer active")
            if source.tenant_id == to_tenant_id:
                raise AccessDenied("Cannot transfer a vehicle to the tenant that already holds it")

            existing = await self.active_instance(to_tenant_id, source.canonical_vehicle_id)
            if existing is not None:
                return self._duplicate(existing)

            if mileage is None:
                mileage = source.current_mileage
            await self._deactivate(source, "transferred", mileage)
            instance, first_time = await self._insert_instance(
                to_tenant_id, source.canonical_vehicle_id, mileage, nickname
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.active_instance(to_tenant_id, canonical_vehicle_id)
            if existing is None:
                raise StorageUnavailable(f"Could not transfer vehicle instance {user_vehicle_id}")
            return self._duplicate(existing)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable(f"Could not transfer vehicle instance {user_vehicle_id}: {e}") from e

        logger.info(
            "Vehicle transferred",
            extra={
                "tenant_id": source.tenant_id,
                "to_tenant_id": to_tenant_id,
                "canonical_vehicle_id": source.canonical_vehicle_id,
            },
        )
        return AttachResult(user_vehicle=instance, first_time_owner=first_time)

    @track_performance(service_name="TenantVehicleBinder")
    async def update_instance(
        self,
        user_vehicle_id: int,
        nickname: Optional[str] = None,
        mileage: Optional[int] = None,
    ) -> UserVehicle:
        """Renames an instance or records a new odometer reading (never lower than the last one)."""
        _check_mileage(mileage)
        try:
            instance = await self.get_instance(user_vehicle_id)
            if not instance.is_active:
                raise AccessDenied(f"Vehicle instance {user_vehicle_id} has been released")
            if mileage is not None and instance.current_mileage is not None and mileage < instance.current_mileage:
                raise MileageRegression(
                    f"Mileage {mileage} is lower than the recorded {instance.current_mileage}"
                )
            if nickname is not None:
                instance.nickname = nickname
            if mileage is not None:
                instance.current_mileage = mileage
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable(f"Could not update vehicle instance {user_vehicle_id}: {e}") from e
        return instance

    async def get_instance(self, user_vehicle_id: int) -> UserVehicle:
        instance = (await self.db.execute(
            select(UserVehicle)
            .where(UserVehicle.id == user_vehicle_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if instance is None:
            raise VehicleNotFound(f"Vehicle instance {user_vehicle_id} not found")
        return instance

    async def active_instance(self, tenant_id: str, canonical_vehicle_id: int) -> Optional[UserVehicle]:
        return (await self.db.execute(
            select(UserVehicle).where(
                UserVehicle.tenant_id == tenant_id,
                UserVehicle.canonical_vehicle_id == canonical_vehicle_id,
                UserVehicle.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()

    async def has_held(self, tenant_id: str, canonical_vehicle_id: int) -> bool:
        """True if the tenant ever held an instance of this vehicle, active or released."""
        return bool((await self.db.execute(
            select(exists().where(
                UserVehicle.tenant_id == tenant_id,
                UserVehicle.canonical_vehicle_id == canonical_vehicle_id,
            ))
        )).scalar())

    async def list_for_tenant(
        self, tenant_id: str, include_released: bool = False
    ) -> List[Tuple[UserVehicle, CanonicalVehicle]]:
        stmt = (
            select(UserVehicle, CanonicalVehicle)
            .join(CanonicalVehicle, CanonicalVehicle.id == UserVehicle.canonical_vehicle_id)
            .where(UserVehicle.tenant_id == tenant_id)
            .order_by(UserVehicle.created_at.desc(), UserVehicle.id.desc())
            .execution_options(populate_existing=True)
        )
        if not include_released:
            stmt = stmt.where(UserVehicle.is_active.is_(True))
        try:
            rows = (await self.db.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e
        return [(row[0], row[1]) for row in rows]

    async def history(
        self, canonical_vehicle_id: int, tenant_ids: Optional[List[str]] = None
    ) -> List[OwnershipHistoryEntry]:
        """Ledger entries of a vehicle in the order they happened, optionally limited to some tenants."""
        stmt = (
            select(OwnershipHistoryEntry)
            .where(OwnershipHistoryEntry.canonical_vehicle_id == canonical_vehicle_id)
            .order_by(OwnershipHistoryEntry.occurred_at, OwnershipHistoryEntry.id)
        )
        if tenant_ids is not None:
            stmt = stmt.where(OwnershipHistoryEntry.tenant_id.in_(tenant_ids))
        try:
            return list((await self.db.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e

    async def _require_canonical(self, canonical_vehicle_id: int) -> None:
        found = (await self.db.execute(
            select(CanonicalVehicle.id).where(CanonicalVehicle.id == canonical_vehicle_id)
        )).scalar_one_or_none()
        if found is None:
            raise VehicleNotFound(f"Canonical vehicle {canonical_vehicle_id} not found")

    async def _insert_instance(
        self,
        tenant_id: str,
        canonical_vehicle_id: int,
        mileage: Optional[int],
        nickname: Optional[str],
    ) -> Tuple[UserVehicle, bool]:
        first_time = not await self.has_held(tenant_id, canonical_vehicle_id)

        instance = UserVehicle(
            tenant_id=tenant_id,
            canonical_vehicle_id=canonical_vehicle_id,
            nickname=nickname,
            current_mileage=mileage,
            is_active=True,
            created_at=_utcnow(),
        )
        self.db.add(instance)
        await self.db.flush()  # raises IntegrityError if another active instance slipped in

        self.db.add(OwnershipHistoryEntry(
            canonical_vehicle_id=canonical_vehicle_id,
            tenant_id=tenant_id,
            user_vehicle_id=instance.id,
            event_type="acquired",
            mileage_at_event=mileage,
        ))

        if first_time:
            await self.db.execute(
                update(CanonicalVehicle)
                .where(CanonicalVehicle.id == canonical_vehicle_id)
                .values(total_owners=CanonicalVehicle.total_owners + 1)
                .execution_options(synchronize_session=False)
            )
        await self.db.flush()
        return instance, first_time

    async def _deactivate(self, instance: UserVehicle, event_type: str, mileage: Optional[int]) -> bool:
        if mileage is not None and instance.current_mileage is not None and mileage < instance.current_mileage:
            raise MileageRegression(
                f"Mileage {mileage} is lower than the recorded {instance.current_mileage}"
            )

        values = {"is_active": False, "released_at": _utcnow()}
        if mileage is not None:
            values["current_mileage"] = mileage

        # Compare-and-set on is_active; a concurrent release makes this a no-op
        result = await self.db.execute(
            update(UserVehicle)
            .where(UserVehicle.id == instance.id, UserVehicle.is_active.is_(True))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False

        self.db.add(OwnershipHistoryEntry(
            canonical_vehicle_id=instance.canonical_vehicle_id,
            tenant_id=instance.tenant_id,
            user_vehicle_id=instance.id,
            event_type=event_type,
            mileage_at_event=mileage if mileage is not None else instance.current_mileage,
        ))

        # A tenant that no longer holds the vehicle cannot keep sharing it
        now = values["released_at"]
        revoked = await self.db.execute(
            update(SharedAccessGrant)
            .where(
                SharedAccessGrant.canonical_vehicle_id == instance.canonical_vehicle_id,
                SharedAccessGrant.granting_tenant_id == instance.tenant_id,
                SharedAccessGrant.status != "revoked",
            )
            .values(status="revoked", revoked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if revoked.rowcount:
            logger.info(
                "Outgoing grants revoked on release",
                extra={
                    "tenant_id": instance.tenant_id,
                    "canonical_vehicle_id": instance.canonical_vehicle_id,
                    "revoked_grants": revoked.rowcount,
                },
            )
        await self.db.flush()
        return True

    def _duplicate(self, existing: UserVehicle) -> AttachResult:
        logger.info(
            "Duplicate active instance",
            extra={
                "tenant_id": existing.tenant_id,
                "canonical_vehicle_id": existing.canonical_vehicle_id,
                "user_vehicle_id": existing.id,
            },
        )
        return AttachResult(user_vehicle=existing, duplicate=DuplicateInfo.from_instance(existing))
