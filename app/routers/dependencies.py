from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.db import get_db
from services.registration_service import RegistrationService


async def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-ID", min_length=1, max_length=64)) -> str:
    """Tenant making the request. Authentication happens upstream of this service."""
    return x_tenant_id.strip()


async def get_registration_service(request: Request, db: AsyncSession = Depends(get_db)) -> RegistrationService:
    oracle = getattr(request.app.state, "oracle", None)
    return RegistrationService(db=db, oracle=oracle)
