import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from services.exceptions import RegistryDomainError, StorageUnavailable

logger = logging.getLogger(__name__)


async def registry_exception_handler(request: Request, exc: RegistryDomainError):
    """Maps registry domain errors to their HTTP status and a structured body."""
    headers = None
    if isinstance(exc, StorageUnavailable):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
        logger.error(f"Storage unavailable on {request.url.path}: {exc.message}")
    else:
        logger.info(
            f"Request rejected: {exc.code}",
            extra={"path": request.url.path, "error": exc.code, "tenant_id": request.headers.get("X-Tenant-ID")},
        )

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
