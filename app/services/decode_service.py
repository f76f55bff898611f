import asyncio
import logging
from dataclasses import replace
from typing import Optional

from core.config import (
    LOW_CONFIDENCE_THRESHOLD,
    MANUAL_DECODE_CONFIDENCE,
    ORACLE_TIMEOUT_SECONDS,
    SOURCE_CONFIDENCE_CEILING,
)
from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from vin.fallback import FallbackDecoder
from vin.oracle import DecodeNotFound, DecodeOracle, OracleUnavailable
from vin.types import DecodeResult, DecodeSource, NormalizedVin, PartialDecode, ValidationResult

logger = logging.getLogger(__name__)


def decode_confidence(source: DecodeSource, validation_confidence: int, decode: DecodeResult) -> int:
    """
    Confidence of a decode: validation confidence capped by the source's
    ceiling, scaled by how many of year/make/model are known.

    A year range (fallback) counts as half a year.
    """
    ceiling = SOURCE_CONFIDENCE_CEILING[source.value]
    if decode.year:
        year_fill = 1.0
    elif decode.year_range:
        year_fill = 0.5
    else:
        year_fill = 0.0
    fill = (year_fill + (1.0 if decode.make else 0.0) + (1.0 if decode.model else 0.0)) / 3
    return int(round(min(validation_confidence, ceiling) * fill))


class DecodeService:
    """
    Turns a validated VIN into a tagged `DecodeResult`.

    The oracle is called with a hard timeout. A timeout, an explicit miss and
    an oracle failure are treated alike: the VIN is decoded from its own
    structure by the FallbackDecoder. When the oracle answers with gaps, the
    fallback make and year range fill them in.
    """

    def __init__(
        self,
        oracle: Optional[DecodeOracle] = None,
        fallback: Optional[FallbackDecoder] = None,
        timeout_seconds: float = ORACLE_TIMEOUT_SECONDS,
    ):
        self.oracle = oracle
        self.fallback = fallback or FallbackDecoder()
        self.timeout_seconds = timeout_seconds

    @track_performance(service_name="DecodeService")
    async def decode(self, vin: NormalizedVin, validation: ValidationResult) -> DecodeResult:
        """
        Decodes a VIN through the oracle with fallback.

        Args:
            vin (NormalizedVin): normalized VIN
            validation (ValidationResult): result of `validate(vin)`, its
                confidence bounds the decode confidence

        Returns:
            DecodeResult: tagged `oracle` or `fallback`, never raises for
                          oracle problems
        """
        partial = self.fallback.decode_fallback(vin)

        if self.oracle is None:
            return self._finish(self._from_fallback(partial), validation, reason="disabled")

        try:
            answer = await asyncio.wait_for(self.oracle.decode(vin.value), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return self._finish(self._from_fallback(partial), validation, reason="timeout")
        except DecodeNotFound:
            return self._finish(self._from_fallback(partial), validation, reason="not_found")
        except OracleUnavailable as e:
            logger.warning("Decode oracle unavailable", extra={"vin": vin.value, "error": str(e)})
            return self._finish(self._from_fallback(partial), validation, reason="unavailable")

        merged = self._merge(answer, partial)
        reason = "partial" if merged != answer else None
        return self._finish(merged, validation, reason=reason)

    def manual(self, **fields) -> DecodeResult:
        """
        A user-confirmed decode. It does not depend on the checksum, so its
        confidence is MANUAL_DECODE_CONFIDENCE scaled by year/make/model fill.
        """
        result = DecodeResult(source=DecodeSource.MANUAL, **fields)
        confidence = decode_confidence(DecodeSource.MANUAL, MANUAL_DECODE_CONFIDENCE, result)
        prometheus_collector.record_decode(DecodeSource.MANUAL.value)
        return replace(result, confidence=confidence)

    @staticmethod
    def _from_fallback(partial: PartialDecode) -> DecodeResult:
        return DecodeResult(
            source=DecodeSource.FALLBACK,
            make=partial.make,
            year_range=partial.year_range,
        )

    @staticmethod
    def _merge(answer: DecodeResult, partial: PartialDecode) -> DecodeResult:
        updates = {}
        if not answer.make and partial.make:
            updates["make"] = partial.make
        if not answer.year and not answer.year_range and partial.year_range:
            updates["year_range"] = partial.year_range
        return replace(answer, **updates) if updates else answer

    def _finish(self, result: DecodeResult, validation: ValidationResult, reason: Optional[str]) -> DecodeResult:
        confidence = decode_confidence(result.source, validation.confidence, result)
        result = replace(result, confidence=confidence)

        prometheus_collector.record_decode(result.source.value)
        if reason:
            prometheus_collector.record_oracle_fallback(reason)

        logger.info(
            "VIN decoded",
            extra={
                "source": result.source.value,
                "confidence": confidence,
                "fallback_reason": reason,
                "low_confidence": result.is_low_confidence(LOW_CONFIDENCE_THRESHOLD),
            },
        )
        return result
