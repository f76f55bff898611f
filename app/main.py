from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from core.logging import setup_logging
from exceptions import registry_exception_handler
from middleware.rate_limit import custom_rate_limit_exceeded, limiter
from routers import health, metrics, sharing, vehicles, vin_check
from services.exceptions import RegistryDomainError
from vin.oracle import build_oracle

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    oracle = build_oracle()
    app.state.oracle = oracle
    logger.info("Decode oracle configured", extra={"oracle": type(oracle).__name__ if oracle else "none"})

    try:
        yield
    finally:
        # teardown on shutdown
        if oracle is not None:
            await oracle.aclose()
        app.state.oracle = None


app = FastAPI(title="VIN Registry API", lifespan=lifespan)

# Register exception handlers
app.add_exception_handler(RegistryDomainError, registry_exception_handler)
app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],   # Allows POST, GET, PATCH, OPTIONS, etc
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(vin_check.router)
app.include_router(vehicles.router)
app.include_router(sharing.router)


@app.get("/", tags=["root"])
def hello():
    return {"service": "vin-registry", "status": "ok"}
