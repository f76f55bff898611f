from fastapi import APIRouter, Depends

from routers.dependencies import get_registration_service
from schemas.vehicle import VinCheckRequest, VinCheckResponse
from services.registration_service import RegistrationService


router = APIRouter(prefix="/vin", tags=["vin"])


@router.post("/check", response_model=VinCheckResponse)
async def check_vin(req: VinCheckRequest, service: RegistrationService = Depends(get_registration_service)):
    """Normalizes, validates and decodes a VIN without registering it."""
    result = await service.check_vin(req.vin)
    return VinCheckResponse.from_result(result)
