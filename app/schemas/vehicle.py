from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.config import MAX_MILEAGE


class RegisterVehicleRequest(BaseModel):
    vin: str = Field(..., min_length=1, max_length=64, description="VIN as typed, pasted or scanned")
    mileage: Optional[int] = Field(None, ge=0, le=MAX_MILEAGE, description="Current odometer reading")
    nickname: Optional[str] = Field(None, max_length=80)

    @field_validator('nickname')
    def strip_nickname(cls, v):
        if v is None:
            return v
        return v.strip() or None


class UpdateVehicleRequest(BaseModel):
    nickname: Optional[str] = Field(None, max_length=80)
    mileage: Optional[int] = Field(None, ge=0, le=MAX_MILEAGE)


class TransferVehicleRequest(BaseModel):
    to_tenant_id: str = Field(..., min_length=1, max_length=64)
    mileage: Optional[int] = Field(None, ge=0, le=MAX_MILEAGE)


class ManualDecodeRequest(BaseModel):
    year: Optional[int] = Field(None, ge=1900, le=2100)
    make: Optional[str] = Field(None, max_length=80)
    model: Optional[str] = Field(None, max_length=80)
    trim: Optional[str] = Field(None, max_length=80)
    body_class: Optional[str] = Field(None, max_length=80)


class VinCheckRequest(BaseModel):
    vin: str = Field(..., min_length=1, max_length=64)


class CanonicalVehicleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vin: str
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    body_class: Optional[str] = None
    year_range_start: Optional[int] = None
    year_range_end: Optional[int] = None
    decode_confidence: int
    decode_source: str
    total_owners: int
    display_name: Optional[str] = None


class UserVehicleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: str
    canonical_vehicle_id: int
    nickname: Optional[str] = None
    current_mileage: Optional[int] = None
    is_active: bool
    created_at: Optional[datetime] = None
    released_at: Optional[datetime] = None


class DuplicateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_vehicle_id: int
    nickname: Optional[str] = None
    added_at: Optional[datetime] = None
    current_mileage: Optional[int] = None


class HistoryPreviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_owners: int
    previous_instances: int
    first_registered_at: Optional[datetime] = None
    last_known_mileage: Optional[int] = None


class ValidationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_valid: bool
    confidence: int
    reasons: List[str] = []
    checksum_valid: bool
    wmi_known: bool
    year_plausible: bool


class DecodeOut(BaseModel):
    source: str
    confidence: int
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    body_class: Optional[str] = None
    year_range_start: Optional[int] = None
    year_range_end: Optional[int] = None
    display_name: Optional[str] = None

    @classmethod
    def from_decode(cls, decode) -> "DecodeOut":
        return cls(
            source=decode.source.value,
            confidence=decode.confidence,
            display_name=decode.display_name,
            **decode.vehicle_fields(),
        )


class RegisterVehicleResponse(BaseModel):
    user_vehicle: UserVehicleOut
    canonical_vehicle: CanonicalVehicleOut
    created: bool
    duplicate: Optional[DuplicateOut] = None
    history_preview: Optional[HistoryPreviewOut] = None
    validation: ValidationOut
    decode: DecodeOut
    warnings: List[str] = []

    @classmethod
    def from_result(cls, result) -> "RegisterVehicleResponse":
        return cls(
            user_vehicle=UserVehicleOut.model_validate(result.user_vehicle),
            canonical_vehicle=CanonicalVehicleOut.model_validate(result.canonical_vehicle),
            created=result.created,
            duplicate=DuplicateOut.model_validate(result.duplicate) if result.duplicate else None,
            history_preview=(
                HistoryPreviewOut.model_validate(result.history_preview) if result.history_preview else None
            ),
            validation=ValidationOut.model_validate(result.validation),
            decode=DecodeOut.from_decode(result.decode),
            warnings=result.warnings,
        )


class GarageVehicleOut(BaseModel):
    user_vehicle: UserVehicleOut
    canonical_vehicle: CanonicalVehicleOut


class TransferVehicleResponse(BaseModel):
    user_vehicle: UserVehicleOut
    duplicate: Optional[DuplicateOut] = None


class OwnershipEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: str
    user_vehicle_id: Optional[int] = None
    event_type: str
    mileage_at_event: Optional[int] = None
    occurred_at: datetime


class ManualDecodeResponse(BaseModel):
    canonical_vehicle: CanonicalVehicleOut
    decode: DecodeOut
    applied: bool


class VinCheckResponse(BaseModel):
    vin: str
    substitutions: List[str] = []
    ambiguous_positions: List[int] = []
    validation: ValidationOut
    decode: Optional[DecodeOut] = None

    @classmethod
    def from_result(cls, result) -> "VinCheckResponse":
        return cls(
            vin=result.normalized.value,
            substitutions=[s.describe() for s in result.normalized.substitutions],
            ambiguous_positions=list(result.normalized.ambiguous_positions),
            validation=ValidationOut.model_validate(result.validation),
            decode=DecodeOut.from_decode(result.decode) if result.decode else None,
        )
