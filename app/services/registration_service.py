import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import LOW_CONFIDENCE_THRESHOLD
from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from models.canonical_vehicle import CanonicalVehicle
from models.ownership_history import OwnershipHistoryEntry
from models.shared_access import SharedAccessGrant
from models.user_vehicle import UserVehicle
from services.canonical_registry import CanonicalRegistry
from services.decode_service import DecodeService
from services.exceptions import AccessDenied, MalformedInput, StorageUnavailable, VehicleNotFound
from services.shared_access import GrantResult, SharedAccessManager, SharedView
from services.tenant_binder import AttachResult, DuplicateInfo, TenantVehicleBinder
from vin.normalizer import normalize
from vin.oracle import DecodeOracle
from vin.tables import VIN_ALPHABET
from vin.types import DecodeResult, NormalizedVin, ValidationResult
from vin.validator import validate

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_WARNING = "low_confidence_decode"
CHECKSUM_WARNING = "checksum_mismatch"


@dataclass
class HistoryPreview:
    """What a new owner may learn about a vehicle's past without seeing other tenants."""
    total_owners: int
    previous_instances: int
    first_registered_at: Optional[datetime]
    last_known_mileage: Optional[int]


@dataclass
class RegistrationResult:
    user_vehicle: UserVehicle
    canonical_vehicle: CanonicalVehicle
    created: bool
    validation: ValidationResult
    decode: DecodeResult
    duplicate: Optional[DuplicateInfo] = None
    history_preview: Optional[HistoryPreview] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class VinCheckResult:
    normalized: NormalizedVin
    validation: ValidationResult
    decode: Optional[DecodeResult] = None


@dataclass
class ManualDecodeResult:
    canonical_vehicle: CanonicalVehicle
    decode: DecodeResult
    applied: bool


class RegistrationService:
    """
    External operations of the vehicle registry.

    Composes the VIN pipeline (normalize, validate, decode) with the
    CanonicalRegistry, TenantVehicleBinder and SharedAccessManager. Each
    storage step is its own atomic transaction; validation and decode
    problems are returned as data (confidence, warnings, duplicate) and only
    malformed input and storage failures are raised.

    Tenant ids are taken as given; callers are expected to have
    authenticated them.
    """

    def __init__(
        self,
        db: AsyncSession,
        oracle: Optional[DecodeOracle] = None,
        decoder: Optional[DecodeService] = None,
    ):
        """
        Initializes the registration service with a database session.

        Args:
            db (AsyncSession): Active SQLAlchemy async database session
            oracle (DecodeOracle, optional): decode oracle; fallback-only when None
            decoder (DecodeService, optional): overrides the decoder built from `oracle`
        """
        self.db = db
        self.decoder = decoder or DecodeService(oracle=oracle)
        self.registry = CanonicalRegistry(db)
        self.binder = TenantVehicleBinder(db)
        self.sharing = SharedAccessManager(db)

    @track_performance(service_name="RegistrationService")
    async def register_vehicle(
        self,
        raw_vin: str,
        tenant_id: str,
        mileage: Optional[int] = None,
        nickname: Optional[str] = None,
    ) -> RegistrationResult:
        """
        Registers a raw VIN in a tenant's garage.

        Pipeline:
            1. normalize: case, separators, OCR confusables
            2. validate: structure, checksum, WMI, model year
            3. decode: oracle within its timeout, fallback decoder otherwise
            4. CanonicalRegistry.find_or_create: one row per VIN, race safe
            5. TenantVehicleBinder.attach: one active instance per tenant

        Args:
            raw_vin (str): VIN as typed, pasted or scanned
            tenant_id (str): tenant registering the vehicle
            mileage (int, optional): current odometer reading
            nickname (str, optional): tenant's label for the vehicle

        Returns:
            RegistrationResult: instance, canonical record, validation and
                decode details. `duplicate` is set when the tenant already
                has this vehicle; `history_preview` when the vehicle existed
                before this call; `warnings` lists soft problems such as
                'low_confidence_decode'.

        Raises:
            MalformedInput: VIN is not 17 characters or has illegal characters
            StorageUnavailable: a registry transaction failed (retryable)
        """
        normalized = normalize(raw_vin)
        validation = validate(normalized)
        if not validation.is_valid:
            raise MalformedInput(
                "; ".join(validation.reasons),
                value=normalized.value,
                offending=[
                    (position, ch)
                    for position, ch in enumerate(normalized.value, start=1)
                    if ch not in VIN_ALPHABET
                ],
            )

        decode = await self.decoder.decode(normalized, validation)
        found = await self.registry.find_or_create(normalized, decode)
        canonical = found.canonical_vehicle

        preview = None
        if not found.created:
            preview = await self.history_preview(canonical.id, tenant_id)

        attached = await self.binder.attach(tenant_id, canonical.id, mileage=mileage, nickname=nickname)
        canonical = await self.registry.get(canonical.id)

        warnings = []
        if decode.is_low_confidence(LOW_CONFIDENCE_THRESHOLD):
            warnings.append(LOW_CONFIDENCE_WARNING)
        if not validation.checksum_valid:
            warnings.append(CHECKSUM_WARNING)

        if attached.duplicate is not None:
            outcome = "duplicate"
        elif found.created:
            outcome = "created"
        else:
            outcome = "linked"
        prometheus_collector.record_registration(outcome)

        logger.info(
            "Vehicle registration processed",
            extra={
                "vin": normalized.value,
                "tenant_id": tenant_id,
                "canonical_vehicle_id": canonical.id,
                "canonical_created": found.created,
                "duplicate": attached.duplicate is not None,
                "decode_source": decode.source.value,
                "decode_confidence": decode.confidence,
            },
        )

        return RegistrationResult(
            user_vehicle=attached.user_vehicle,
            canonical_vehicle=canonical,
            created=found.created,
            validation=validation,
            decode=decode,
            duplicate=attached.duplicate,
            history_preview=preview,
            warnings=warnings,
        )

    @track_performance(service_name="RegistrationService")
    async def release_vehicle(self, user_vehicle_id: int, tenant_id: str) -> UserVehicle:
        """Removes a vehicle from the tenant's garage. Releasing twice is a no-op."""
        await self._owned_instance(user_vehicle_id, tenant_id)
        return await self.binder.release(user_vehicle_id)

    async def request_shared_access(
        self,
        canonical_vehicle_id: int,
        from_tenant: str,
        to_tenant: str,
        scope: str = "read_only",
    ) -> GrantResult:
        return await self.sharing.grant(canonical_vehicle_id, from_tenant, to_tenant, scope)

    async def respond_to_shared_access(self, grant_id: int, tenant_id: str, accept: bool) -> SharedAccessGrant:
        """Grantee accepts (pending -> active) or rejects (pending -> revoked) a grant."""
        grant = await self.sharing.get_grant(grant_id)
        if grant.grantee_tenant_id != tenant_id:
            raise AccessDenied(f"Grant {grant_id} is not addressed to tenant {tenant_id}")
        if accept:
            return await self.sharing.accept(grant_id)
        return await self.sharing.reject(grant_id)

    async def revoke_shared_access(self, grant_id: int, tenant_id: str) -> SharedAccessGrant:
        """Either side of a grant may revoke it."""
        grant = await self.sharing.get_grant(grant_id)
        if tenant_id not in (grant.granting_tenant_id, grant.grantee_tenant_id):
            raise AccessDenied(f"Tenant {tenant_id} is not a party to grant {grant_id}")
        return await self.sharing.revoke(grant_id)

    async def list_grants(self, tenant_id: str, direction: str = "incoming", include_revoked: bool = False):
        return await self.sharing.list_grants(tenant_id, direction=direction, include_revoked=include_revoked)

    async def get_shared_view(self, canonical_vehicle_id: int, tenant_id: str) -> SharedView:
        return await self.sharing.get_shared_view(canonical_vehicle_id, tenant_id)

    async def list_tenant_vehicles(
        self, tenant_id: str, include_released: bool = False
    ) -> List[Tuple[UserVehicle, CanonicalVehicle]]:
        return await self.binder.list_for_tenant(tenant_id, include_released=include_released)

    @track_performance(service_name="RegistrationService")
    async def update_user_vehicle(
        self,
        user_vehicle_id: int,
        tenant_id: str,
        nickname: Optional[str] = None,
        mileage: Optional[int] = None,
    ) -> UserVehicle:
        await self._owned_instance(user_vehicle_id, tenant_id)
        return await self.binder.update_instance(user_vehicle_id, nickname=nickname, mileage=mileage)

    @track_performance(service_name="RegistrationService")
    async def transfer_vehicle(
        self,
        user_vehicle_id: int,
        from_tenant: str,
        to_tenant: str,
        mileage: Optional[int] = None,
    ) -> AttachResult:
        """Hands a vehicle to another tenant; see TenantVehicleBinder.transfer."""
        await self._owned_instance(user_vehicle_id, from_tenant)
        return await self.binder.transfer(user_vehicle_id, to_tenant, mileage=mileage)

    async def get_ownership_history(self, canonical_vehicle_id: int, tenant_id: str) -> List[OwnershipHistoryEntry]:
        """
        Ledger entries the tenant may see: its own, plus the grantor's when it
        holds an active `full_history` grant.
        """
        await self.registry.get(canonical_vehicle_id)
        tenants = []
        try:
            if await self.binder.has_held(tenant_id, canonical_vehicle_id):
                tenants.append(tenant_id)
            grant = await self.sharing.active_grant(canonical_vehicle_id, tenant_id)
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e
        if grant is not None and grant.scope == "full_history":
            tenants.append(grant.granting_tenant_id)
        if not tenants:
            raise AccessDenied(f"Tenant {tenant_id} has no access to vehicle {canonical_vehicle_id}")
        return await self.binder.history(canonical_vehicle_id, tenants)

    async def history_preview(self, canonical_vehicle_id: int, tenant_id: str) -> HistoryPreview:
        """Aggregate past of a vehicle as seen by `tenant_id`. Never exposes other tenant ids."""
        try:
            vehicle = await self.registry.get(canonical_vehicle_id)
            previous_instances = (await self.db.execute(
                select(func.count(UserVehicle.id)).where(
                    UserVehicle.canonical_vehicle_id == canonical_vehicle_id,
                    UserVehicle.tenant_id != tenant_id,
                )
            )).scalar_one()
            last_mileage = (await self.db.execute(
                select(OwnershipHistoryEntry.mileage_at_event)
                .where(
                    OwnershipHistoryEntry.canonical_vehicle_id == canonical_vehicle_id,
                    OwnershipHistoryEntry.tenant_id != tenant_id,
                    OwnershipHistoryEntry.mileage_at_event.is_not(None),
                )
                .order_by(OwnershipHistoryEntry.occurred_at.desc(), OwnershipHistoryEntry.id.desc())
                .limit(1)
            )).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e

        return HistoryPreview(
            total_owners=vehicle.total_owners,
            previous_instances=previous_instances,
            first_registered_at=vehicle.created_at,
            last_known_mileage=last_mileage,
        )

    @track_performance(service_name="RegistrationService")
    async def check_vin(self, raw_vin: str) -> VinCheckResult:
        """Normalizes, validates and decodes a VIN without writing anything."""
        normalized = normalize(raw_vin)
        validation = validate(normalized)
        decode = None
        if validation.is_valid:
            decode = await self.decoder.decode(normalized, validation)
        return VinCheckResult(normalized=normalized, validation=validation, decode=decode)

    @track_performance(service_name="RegistrationService")
    async def apply_manual_decode(
        self,
        canonical_vehicle_id: int,
        tenant_id: str,
        year: Optional[int] = None,
        make: Optional[str] = None,
        model: Optional[str] = None,
        trim: Optional[str] = None,
        body_class: Optional[str] = None,
    ) -> ManualDecodeResult:
        """
        Stores a decode confirmed by a tenant that holds the vehicle.

        Goes through the same monotonic enrichment as oracle decodes, so a
        manual decode never overwrites a more confident one.
        """
        await self.registry.get(canonical_vehicle_id)
        if await self.binder.active_instance(tenant_id, canonical_vehicle_id) is None:
            raise AccessDenied(f"Tenant {tenant_id} does not hold vehicle {canonical_vehicle_id}")

        decode = self.decoder.manual(year=year, make=make, model=model, trim=trim, body_class=body_class)
        applied = await self.registry.enrich(canonical_vehicle_id, decode)
        vehicle = await self.registry.get(canonical_vehicle_id)
        return ManualDecodeResult(canonical_vehicle=vehicle, decode=decode, applied=applied)

    async def _owned_instance(self, user_vehicle_id: int, tenant_id: str) -> UserVehicle:
        # Another tenant's instance is reported as missing, not forbidden
        try:
            instance = await self.binder.get_instance(user_vehicle_id)
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e
        if instance.tenant_id != tenant_id:
            raise VehicleNotFound(f"Vehicle instance {user_vehicle_id} not found")
        return instance
