from typing import List, Literal

from fastapi import APIRouter, Depends

from routers.dependencies import get_registration_service, get_tenant_id
from schemas.sharing import GrantOut, GrantRequest, GrantRequestResponse, GrantResponseRequest, SharedViewOut
from schemas.vehicle import CanonicalVehicleOut, OwnershipEventOut
from services.registration_service import RegistrationService


router = APIRouter(prefix="/sharing", tags=["sharing"])


@router.post("/grants", response_model=GrantRequestResponse)
async def request_shared_access(
    req: GrantRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    """Shares a vehicle the tenant holds. A repeated request updates the scope of the live grant."""
    result = await service.request_shared_access(
        req.canonical_vehicle_id, tenant_id, req.grantee_tenant_id, req.scope
    )
    return GrantRequestResponse(grant=GrantOut.model_validate(result.grant), created=result.created)


@router.get("/grants", response_model=List[GrantOut])
async def list_grants(
    direction: Literal["incoming", "outgoing", "all"] = "incoming",
    include_revoked: bool = False,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    grants = await service.list_grants(tenant_id, direction=direction, include_revoked=include_revoked)
    return [GrantOut.model_validate(grant) for grant in grants]


@router.post("/grants/{grant_id}/respond", response_model=GrantOut)
async def respond_to_grant(
    grant_id: int,
    req: GrantResponseRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    grant = await service.respond_to_shared_access(grant_id, tenant_id, req.accept)
    return GrantOut.model_validate(grant)


@router.post("/grants/{grant_id}/revoke", response_model=GrantOut)
async def revoke_grant(
    grant_id: int,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    grant = await service.revoke_shared_access(grant_id, tenant_id)
    return GrantOut.model_validate(grant)


@router.get("/vehicles/{canonical_vehicle_id}", response_model=SharedViewOut)
async def shared_vehicle(
    canonical_vehicle_id: int,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    view = await service.get_shared_view(canonical_vehicle_id, tenant_id)
    return SharedViewOut(
        canonical_vehicle=CanonicalVehicleOut.model_validate(view.canonical_vehicle),
        grant=GrantOut.model_validate(view.grant),
        grantor_mileage=view.grantor_mileage,
        history=[OwnershipEventOut.model_validate(entry) for entry in view.history],
    )
