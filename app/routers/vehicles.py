from typing import List

from fastapi import APIRouter, Depends

from routers.dependencies import get_registration_service, get_tenant_id
from schemas.vehicle import (
    CanonicalVehicleOut,
    DecodeOut,
    DuplicateOut,
    GarageVehicleOut,
    ManualDecodeRequest,
    ManualDecodeResponse,
    OwnershipEventOut,
    RegisterVehicleRequest,
    RegisterVehicleResponse,
    TransferVehicleRequest,
    TransferVehicleResponse,
    UpdateVehicleRequest,
    UserVehicleOut,
)
from services.registration_service import RegistrationService


router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.post("/register", response_model=RegisterVehicleResponse)
async def register_vehicle(
    req: RegisterVehicleRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    """
    Registers a VIN in the tenant's garage.
    A VIN already in the garage comes back with `duplicate` set instead of an error.
    """
    result = await service.register_vehicle(req.vin, tenant_id, mileage=req.mileage, nickname=req.nickname)
    return RegisterVehicleResponse.from_result(result)


@router.get("", response_model=List[GarageVehicleOut])
async def list_vehicles(
    include_released: bool = False,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    rows = await service.list_tenant_vehicles(tenant_id, include_released=include_released)
    return [
        GarageVehicleOut(
            user_vehicle=UserVehicleOut.model_validate(instance),
            canonical_vehicle=CanonicalVehicleOut.model_validate(vehicle),
        )
        for instance, vehicle in rows
    ]


@router.patch("/{user_vehicle_id}", response_model=UserVehicleOut)
async def update_vehicle(
    user_vehicle_id: int,
    req: UpdateVehicleRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    instance = await service.update_user_vehicle(
        user_vehicle_id, tenant_id, nickname=req.nickname, mileage=req.mileage
    )
    return UserVehicleOut.model_validate(instance)


@router.post("/{user_vehicle_id}/release", response_model=UserVehicleOut)
async def release_vehicle(
    user_vehicle_id: int,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    """Removes the vehicle from the garage. Releasing twice succeeds both times."""
    instance = await service.release_vehicle(user_vehicle_id, tenant_id)
    return UserVehicleOut.model_validate(instance)


@router.post("/{user_vehicle_id}/transfer", response_model=TransferVehicleResponse)
async def transfer_vehicle(
    user_vehicle_id: int,
    req: TransferVehicleRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    result = await service.transfer_vehicle(user_vehicle_id, tenant_id, req.to_tenant_id, mileage=req.mileage)
    return TransferVehicleResponse(
        user_vehicle=UserVehicleOut.model_validate(result.user_vehicle),
        duplicate=DuplicateOut.model_validate(result.duplicate) if result.duplicate else None,
    )


@router.get("/canonical/{canonical_vehicle_id}/history", response_model=List[OwnershipEventOut])
async def ownership_history(
    canonical_vehicle_id: int,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    entries = await service.get_ownership_history(canonical_vehicle_id, tenant_id)
    return [OwnershipEventOut.model_validate(entry) for entry in entries]


@router.patch("/canonical/{canonical_vehicle_id}/decode", response_model=ManualDecodeResponse)
async def manual_decode(
    canonical_vehicle_id: int,
    req: ManualDecodeRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: RegistrationService = Depends(get_registration_service),
):
    """Stores a user-confirmed decode. Ignored when the stored decode is more confident."""
    result = await service.apply_manual_decode(canonical_vehicle_id, tenant_id, **req.model_dump())
    return ManualDecodeResponse(
        canonical_vehicle=CanonicalVehicleOut.model_validate(result.canonical_vehicle),
        decode=DecodeOut.from_decode(result.decode),
        applied=result.applied,
    )
