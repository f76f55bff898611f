import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.db import dialect_insert
from core.metrics import track_performance
from models.canonical_vehicle import CanonicalVehicle
from services.exceptions import MalformedInput, StorageUnavailable, VehicleNotFound
from vin.tables import VIN_ALPHABET
from vin.types import DecodeResult, NormalizedVin
from vin.validator import validate

logger = logging.getLogger(__name__)


@dataclass
class FindOrCreateResult:
    canonical_vehicle: CanonicalVehicle
    created: bool


class CanonicalRegistry:
    """
    Owns the single canonical record per VIN.

    Uniqueness is enforced by the database (unique constraint on `vin`), never
    by a check-then-insert in application code, so any number of service
    processes can register the same VIN concurrently. The only mutation of an
    existing record is monotonic enrichment of its decode fields.
    """

    def __init__(self, db: AsyncSession):
        """
        Initializes the registry with a database session.

        Args:
            db (AsyncSession): Active SQLAlchemy async database session
        """
        self.db = db

    @track_performance(service_name="CanonicalRegistry")
    async def find_or_create(self, vin: NormalizedVin, decode: DecodeResult) -> FindOrCreateResult:
        """
        Returns the canonical vehicle for a VIN, inserting it if missing.

        Algorithm:
            1. INSERT ... ON CONFLICT (vin) DO NOTHING RETURNING id
            2. If nothing came back another writer owns the row: read it and
               enrich it when this decode is more confident
            3. Commit and return the row with `created` telling who won

        Args:
            vin (NormalizedVin): normalized VIN
            decode (DecodeResult): decode to store (or enrich with)

        Returns:
            FindOrCreateResult: canonical row and whether this call inserted it

        Raises:
            MalformedInput: VIN fails structural validation
            StorageUnavailable: the transaction could not be completed
        """
        validation = validate(vin)
        if not validation.is_valid:
            raise MalformedInput(
                "; ".join(validation.reasons) or "VIN is structurally invalid",
                value=vin.value,
                offending=[(pos, ch) for pos, ch in enumerate(vin.value, start=1) if ch not in VIN_ALPHABET],
            )

        values = {
            "vin": vin.value,
            **decode.vehicle_fields(),
            "decode_confidence": decode.confidence,
            "decode_source": decode.source.value,
            "total_owners": 0,
        }
        stmt = (
            dialect_insert(self.db, CanonicalVehicle)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["vin"])
            .returning(CanonicalVehicle.id)
        )

        try:
            vehicle_id = (await self.db.execute(stmt)).scalar_one_or_none()
            created = vehicle_id is not None

            if not created:
                vehicle_id = (await self.db.execute(
                    select(CanonicalVehicle.id).where(CanonicalVehicle.vin == vin.value)
                )).scalar_one()
                await self._apply_enrichment(vehicle_id, decode)

            await self.db.commit()
            vehicle = await self._load(vehicle_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable(f"Could not register VIN {vin.value}: {e}") from e

        logger.info(
            "Canonical vehicle resolved",
            extra={"vin": vin.value, "canonical_vehicle_id": vehicle_id, "canonical_created": created},
        )
        return FindOrCreateResult(canonical_vehicle=vehicle, created=created)

    @track_performance(service_name="CanonicalRegistry")
    async def enrich(self, canonical_vehicle_id: int, decode: DecodeResult) -> bool:
        """
        Stores a decode on an existing record if it is strictly more confident.

        Returns:
            bool: True when the row was updated
        """
        try:
            updated = await self._apply_enrichment(canonical_vehicle_id, decode)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable(f"Could not enrich vehicle {canonical_vehicle_id}: {e}") from e
        return updated

    async def get(self, canonical_vehicle_id: int) -> CanonicalVehicle:
        try:
            vehicle = await self._load(canonical_vehicle_id)
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e
        return vehicle

    async def get_by_vin(self, vin: str) -> Optional[CanonicalVehicle]:
        try:
            result = await self.db.execute(
                select(CanonicalVehicle)
                .where(CanonicalVehicle.vin == vin.upper())
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e
        return result.scalar_one_or_none()

    async def _load(self, canonical_vehicle_id: int) -> CanonicalVehicle:
        vehicle = (await self.db.execute(
            select(CanonicalVehicle)
            .where(CanonicalVehicle.id == canonical_vehicle_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if vehicle is None:
            raise VehicleNotFound(f"Canonical vehicle {canonical_vehicle_id} not found")
        return vehicle

    async def _apply_enrichment(self, canonical_vehicle_id: int, decode: DecodeResult) -> bool:
        # Stored confidence only ever rises.
        # Unknown fields keep their stored value (COALESCE(new, old)); the VIN is never written.
        values = {
            column: value
            for column, value in decode.vehicle_fields().items()
            if value is not None
        }
        values["decode_confidence"] = decode.confidence
        values["decode_source"] = decode.source.value

        result = await self.db.execute(
            update(CanonicalVehicle)
            .where(
                CanonicalVehicle.id == canonical_vehicle_id,
                CanonicalVehicle.decode_confidence < decode.confidence,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        enriched = result.rowcount > 0
        if enriched:
            logger.info(
                "Canonical vehicle enriched",
                extra={
                    "canonical_vehicle_id": canonical_vehicle_id,
                    "decode_source": decode.source.value,
                    "decode_confidence": decode.confidence,
                },
            )
        return enriched
