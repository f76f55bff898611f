"""
VIN decode oracles.

An oracle is the external source of truth for year/make/model. Callers only
rely on the `decode(vin)` contract:

- returns a `DecodeResult` tagged `source=oracle` (confidence is assigned by
  the caller, see `services.decode_service`)
- raises `DecodeNotFound` when the oracle explicitly has no match
- raises `OracleUnavailable` for transport or upstream failures
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import httpx

from core.config import (
    ORACLE_BASE_URL,
    ORACLE_MAX_ATTEMPTS,
    ORACLE_PROVIDER,
    ORACLE_TIMEOUT_SECONDS,
    ORACLE_USER_AGENT,
)
from core.retry import NonRetryableError, RetryableError, async_retry
from vin.types import DecodeResult, DecodeSource

logger = logging.getLogger(__name__)

# Values NHTSA returns in trim/series fields that describe a vehicle category, not a trim
GENERIC_TRIM_VALUES = frozenset({
    "NOT APPLICABLE",
    "TRUCK",
    "PASSENGER CAR",
    "MPV",
    "SUV",
    "SEDAN",
    "COUPE",
    "WAGON",
    "HATCHBACK",
    "VAN",
    "BUS",
    "TRAILER",
    "MOTORCYCLE",
    "INCOMPLETE VEHICLE",
})

TRIM_FIELDS = ("Trim", "Trim2", "Series", "Series2")


class DecodeNotFound(NonRetryableError):
    """The oracle answered but has no decode for this VIN."""


class OracleUnavailable(RetryableError):
    """The oracle could not be reached or failed upstream."""


class DecodeOracle(ABC):

    @abstractmethod
    async def decode(self, vin: str) -> DecodeResult:
        ...

    async def aclose(self) -> None:
        return None


class StaticDecodeOracle(DecodeOracle):
    """In-memory oracle backed by a VIN -> attributes table (tests, demos, offline mode)."""

    def __init__(self, table: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self.table: Dict[str, Mapping[str, Any]] = {k.upper(): v for k, v in (table or {}).items()}

    async def decode(self, vin: str) -> DecodeResult:
        entry = self.table.get(vin.upper())
        if entry is None:
            raise DecodeNotFound(f"No static decode for {vin}")
        return DecodeResult(
            source=DecodeSource.ORACLE,
            year=entry.get("year"),
            make=entry.get("make"),
            model=entry.get("model"),
            trim=entry.get("trim"),
            body_class=entry.get("body_class"),
            raw=dict(entry),
        )


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.upper() in ("NOT APPLICABLE", "NULL"):
        return None
    return text


def _format_make(make: str) -> str:
    # NHTSA returns makes uppercased; keep short acronyms (BMW, GMC, KIA) as-is
    return make.title() if make.isupper() and len(make) > 3 else make


def extract_trim(row: Mapping[str, Any]) -> Optional[str]:
    """First-seen, de-duplicated, non-generic values of the trim/series fields joined by spaces."""
    parts = []
    for field_name in TRIM_FIELDS:
        value = _clean(row.get(field_name))
        if value and value.upper() not in GENERIC_TRIM_VALUES and value not in parts:
            parts.append(value)
    return " ".join(parts) if parts else None


class NhtsaDecodeOracle(DecodeOracle):
    """
    Decodes VINs with the NHTSA vPIC `DecodeVinValuesExtended` endpoint.

    Args:
        client (httpx.AsyncClient, optional): shared client; one is created
            (and owned) when not provided
        base_url (str): vPIC API root
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, base_url: str = ORACLE_BASE_URL):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=ORACLE_TIMEOUT_SECONDS,
            headers={"User-Agent": ORACLE_USER_AGENT},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @async_retry(
        max_attempts=ORACLE_MAX_ATTEMPTS,
        base_delay=0.2,
        max_delay=1.0,
        retry_on=(RetryableError, httpx.TransportError),
    )
    async def _fetch(self, vin: str) -> Dict[str, Any]:
        response = await self.client.get(
            f"/DecodeVinValuesExtended/{vin}", params={"format": "json"}
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise OracleUnavailable(f"vPIC returned {response.status_code}")
        if response.status_code >= 400:
            raise DecodeNotFound(f"vPIC rejected {vin} with {response.status_code}")
        return response.json()

    async def decode(self, vin: str) -> DecodeResult:
        try:
            payload = await self._fetch(vin)
        except httpx.HTTPError as e:
            raise OracleUnavailable(f"vPIC transport error: {e}") from e
        except ValueError as e:
            raise OracleUnavailable(f"vPIC returned invalid JSON: {e}") from e

        results = payload.get("Results") or []
        row = results[0] if results else {}

        make = _clean(row.get("Make"))
        if not make:
            raise DecodeNotFound(f"vPIC has no decode for {vin}")

        year = _clean(row.get("ModelYear"))
        return DecodeResult(
            source=DecodeSource.ORACLE,
            year=int(year) if year and year.isdigit() else None,
            make=_format_make(make),
            model=_clean(row.get("Model")),
            trim=extract_trim(row),
            body_class=_clean(row.get("BodyClass")),
            raw=row,
        )


def build_oracle(provider: str = ORACLE_PROVIDER, client: Optional[httpx.AsyncClient] = None) -> Optional[DecodeOracle]:
    """Oracle configured by ORACLE_PROVIDER; `none` disables the oracle (fallback only)."""
    provider = (provider or "none").lower()
    if provider == "nhtsa":
        return NhtsaDecodeOracle(client=client)
    if provider == "static":
        return StaticDecodeOracle()
    if provider == "none":
        return None
    raise ValueError(f"Unknown ORACLE_PROVIDER: {provider}")
