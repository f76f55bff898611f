from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter

from core.config import RATE_LIMIT_DEFAULT
from core.prometheus_metrics import REGISTRY


def tenant_or_address(request: Request) -> str:
    """Rate limit per tenant when the tenant header is present, per client address otherwise."""
    tenant_id = request.headers.get("X-Tenant-ID")
    return f"tenant:{tenant_id}" if tenant_id else get_remote_address(request)


limiter = Limiter(
    key_func=tenant_or_address,
    default_limits=[RATE_LIMIT_DEFAULT]  # Global default
    # storage_uri="redis://localhost:6379", # next steps
)

# Metric for monitoring
rate_limit_exceeded_counter = Counter(
    'vin_registry_rate_limit_exceeded_total',
    'Total rate limit violations',
    ['endpoint'],
    registry=REGISTRY
)


def custom_rate_limit_exceeded(request: Request, exc: RateLimitExceeded):
    rate_limit_exceeded_counter.labels(endpoint=request.url.path).inc()

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": f"Rate limit exceeded: {exc.detail}. Please try again later.",
        },
        headers={"Retry-After": "60"},
    )
