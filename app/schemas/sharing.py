from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.vehicle import CanonicalVehicleOut, OwnershipEventOut


class GrantRequest(BaseModel):
    canonical_vehicle_id: int = Field(..., gt=0)
    grantee_tenant_id: str = Field(..., min_length=1, max_length=64)
    scope: Literal["read_only", "full_history"] = "read_only"


class GrantResponseRequest(BaseModel):
    accept: bool


class GrantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    canonical_vehicle_id: int
    granting_tenant_id: str
    grantee_tenant_id: str
    scope: str
    status: str
    created_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None


class GrantRequestResponse(BaseModel):
    grant: GrantOut
    created: bool


class SharedViewOut(BaseModel):
    canonical_vehicle: CanonicalVehicleOut
    grant: GrantOut
    grantor_mileage: Optional[int] = None
    history: List[OwnershipEventOut] = []
