import logging
import re

from services.exceptions import MalformedInput
from vin.tables import (
    AMBIGUOUS_CHARACTERS,
    MODEL_YEAR_CODES,
    VIN_ALPHABET,
    VIN_LENGTH,
    YEAR_CODE_POSITION,
)
from vin.types import NormalizedVin, Substitution

logger = logging.getLogger(__name__)

_NON_ALPHANUMERIC = re.compile(r"[^A-Z0-9]")


def _is_structurally_valid(candidate: str) -> bool:
    return (
        len(candidate) == VIN_LENGTH
        and all(ch in VIN_ALPHABET for ch in candidate)
        and candidate[YEAR_CODE_POSITION - 1] in MODEL_YEAR_CODES
    )


def normalize(raw: str) -> NormalizedVin:
    """
    Canonicalizes raw VIN text (typed, pasted or OCR'd).

    Steps:
        1. Uppercase and strip every non-alphanumeric character
        2. Reject anything that is not 17 characters long
        3. Read O/Q as 0 and I as 1, but only if the fully mapped string is a
           structurally valid VIN; otherwise leave them and flag the positions

    Args:
        raw (str): VIN as received from the caller

    Returns:
        NormalizedVin: canonical value plus the substitutions that were applied
                       and any positions left ambiguous

    Raises:
        MalformedInput: stripped value is not exactly 17 characters long
    """
    upper = (raw or "").upper()
    stripped = _NON_ALPHANUMERIC.sub("", upper)

    if len(stripped) != VIN_LENGTH:
        offending = [
            (position, ch)
            for position, ch in enumerate(stripped, start=1)
            if ch not in VIN_ALPHABET
        ]
        # Positions in the raw input; whitespace is not worth reporting
        removed = [
            (position, ch)
            for position, ch in enumerate(raw or "", start=1)
            if _NON_ALPHANUMERIC.fullmatch(ch.upper()) and not ch.isspace()
        ]
        raise MalformedInput(
            f"VIN must be {VIN_LENGTH} characters after normalization, got {len(stripped)}",
            value=stripped,
            offending=offending,
            stripped=removed,
        )

    ambiguous = [
        (position, ch)
        for position, ch in enumerate(stripped, start=1)
        if ch in AMBIGUOUS_CHARACTERS
    ]
    if not ambiguous:
        return NormalizedVin(value=stripped, raw=raw)

    mapped = "".join(AMBIGUOUS_CHARACTERS.get(ch, ch) for ch in stripped)
    if _is_structurally_valid(mapped):
        substitutions = tuple(
            Substitution(position=position, original=ch, replacement=AMBIGUOUS_CHARACTERS[ch])
            for position, ch in ambiguous
        )
        logger.debug("Applied OCR substitutions", extra={"vin": mapped, "count": len(substitutions)})
        return NormalizedVin(value=mapped, raw=raw, substitutions=substitutions)

    return NormalizedVin(
        value=stripped,
        raw=raw,
        ambiguous_positions=tuple(position for position, _ in ambiguous),
    )
