"""
Structural and checksum validation of a normalized VIN.

Scoring (0-100):
- check digit matches: 60
- WMI found in the manufacturer table: 25 (10 if only the country range is known)
- model-year character yields a plausible year: 15

A checksum mismatch is reported but does not invalidate the VIN; plenty of
legitimate pre-1981 and grey-import VINs fail it. Only characters outside the
VIN alphabet make a VIN invalid.
"""

from datetime import datetime
from typing import List, Optional, Union

from services.exceptions import MalformedInput
from vin.tables import (
    CHECK_DIGIT_POSITION,
    FIRST_MODEL_YEAR,
    MODEL_YEAR_CODES,
    MODEL_YEAR_CYCLE,
    POSITION_WEIGHTS,
    TRANSLITERATION,
    VIN_ALPHABET,
    VIN_LENGTH,
    YEAR_CODE_POSITION,
    lookup_country,
    lookup_wmi,
)
from vin.types import NormalizedVin, ValidationResult, YearRange

CHECKSUM_SCORE = 60
WMI_EXACT_SCORE = 25
WMI_REGION_SCORE = 10
YEAR_SCORE = 15


def compute_check_digit(value: str) -> str:
    """Expected position-9 character for a 17-character VIN (ISO 3779, mod 11)."""
    total = sum(
        TRANSLITERATION[ch] * weight
        for ch, weight in zip(value, POSITION_WEIGHTS)
    )
    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def candidate_years(year_code: str) -> Optional[YearRange]:
    base = MODEL_YEAR_CODES.get(year_code)
    if base is None:
        return None
    return YearRange(earliest=base, latest=base + MODEL_YEAR_CYCLE)


def validate(vin: Union[NormalizedVin, str], current_year: Optional[int] = None) -> ValidationResult:
    if isinstance(vin, str):
        vin = NormalizedVin(value=vin.strip().upper(), raw=vin)

    value = vin.value
    if len(value) != VIN_LENGTH:
        raise MalformedInput(
            f"VIN must be {VIN_LENGTH} characters, got {len(value)}",
            value=value,
        )

    reasons: List[str] = [f"OCR substitution: {s.describe()}" for s in vin.substitutions]

    bad_positions = [
        (position, ch)
        for position, ch in enumerate(value, start=1)
        if ch not in VIN_ALPHABET
    ]
    if bad_positions:
        reasons.extend(
            f"invalid character '{ch}' at position {position}" for position, ch in bad_positions
        )
        return ValidationResult(is_valid=False, confidence=0, reasons=reasons)

    confidence = 0

    expected = compute_check_digit(value)
    found = value[CHECK_DIGIT_POSITION - 1]
    checksum_valid = expected == found
    if checksum_valid:
        confidence += CHECKSUM_SCORE
    else:
        reasons.append(
            f"checksum mismatch at position {CHECK_DIGIT_POSITION} "
            f"(expected '{expected}', found '{found}')"
        )

    wmi_known = lookup_wmi(vin.wmi) is not None
    if wmi_known:
        confidence += WMI_EXACT_SCORE
    elif lookup_country(vin.wmi):
        confidence += WMI_REGION_SCORE
        reasons.append(f"manufacturer code '{vin.wmi}' not recognised, region only")
    else:
        reasons.append(f"manufacturer code '{vin.wmi}' not recognised")

    year_plausible = False
    years = candidate_years(vin.year_code)
    if years is None:
        reasons.append(f"invalid model year character '{vin.year_code}' at position {YEAR_CODE_POSITION}")
    else:
        latest_allowed = (current_year or datetime.now().year) + 1
        year_plausible = any(
            FIRST_MODEL_YEAR <= year <= latest_allowed
            for year in (years.earliest, years.latest)
        )
        if year_plausible:
            confidence += YEAR_SCORE
        else:
            reasons.append(f"model year {years.label()} outside plausible range")

    return ValidationResult(
        is_valid=True,
        confidence=confidence,
        reasons=reasons,
        checksum_valid=checksum_valid,
        wmi_known=wmi_known,
        year_plausible=year_plausible,
    )
