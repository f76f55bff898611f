from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class DecodeSource(str, Enum):
    ORACLE = "oracle"
    FALLBACK = "fallback"
    MANUAL = "manual"


@dataclass(frozen=True)
class Substitution:
    """An OCR-confusable character replaced during normalization (1-based position)."""
    position: int
    original: str
    replacement: str

    def describe(self) -> str:
        return f"'{self.original}' read as '{self.replacement}' at position {self.position}"


@dataclass(frozen=True)
class NormalizedVin:
    """
    A VIN after case folding, stripping and OCR substitution.

    `value` is always 17 characters long; it may still contain I/O/Q when the
    substitution would not have produced a structurally valid VIN, in which
    case their positions are listed in `ambiguous_positions`.
    """
    value: str
    raw: str = ""
    substitutions: Tuple[Substitution, ...] = ()
    ambiguous_positions: Tuple[int, ...] = ()

    def __str__(self) -> str:
        return self.value

    @property
    def wmi(self) -> str:
        return self.value[:3]

    @property
    def vds(self) -> str:
        return self.value[3:8]

    @property
    def check_digit(self) -> str:
        return self.value[8]

    @property
    def year_code(self) -> str:
        return self.value[9]

    @property
    def plant_code(self) -> str:
        return self.value[10]

    @property
    def serial(self) -> str:
        return self.value[11:]


@dataclass(frozen=True)
class YearRange:
    """Both model years a position-10 character can stand for."""
    earliest: int
    latest: int

    def __contains__(self, year: int) -> bool:
        return year in (self.earliest, self.latest)

    def label(self) -> str:
        return f"{self.earliest}/{self.latest}"


@dataclass
class ValidationResult:
    is_valid: bool
    confidence: int
    reasons: List[str] = field(default_factory=list)
    checksum_valid: bool = False
    wmi_known: bool = False
    year_plausible: bool = False


@dataclass(frozen=True)
class PartialDecode:
    """What the VIN structure alone tells us. Model and trim are never guessed."""
    make: Optional[str] = None
    year_range: Optional[YearRange] = None
    country: Optional[str] = None
    region: Optional[str] = None
    source: DecodeSource = DecodeSource.FALLBACK


@dataclass(frozen=True)
class DecodeResult:
    """
    Tagged decode outcome.

    Every vehicle attribute is nullable; callers branch on `source` and
    `confidence` instead of trusting whatever fields happen to be set.
    """
    source: DecodeSource
    confidence: int = 0
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    body_class: Optional[str] = None
    year_range: Optional[YearRange] = None
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)

    @property
    def display_name(self) -> Optional[str]:
        if self.year or self.model:
            parts = [str(self.year) if self.year else None, self.make, self.model, self.trim]
            return " ".join(p for p in parts if p) or None
        if self.make and self.year_range:
            return f"{self.make} ({self.year_range.earliest}–{self.year_range.latest})"
        return self.make

    def is_low_confidence(self, threshold: int) -> bool:
        return self.source == DecodeSource.FALLBACK or self.confidence < threshold

    def vehicle_fields(self) -> Dict[str, Any]:
        """Columns written to a canonical vehicle row."""
        return {
            "year": self.year,
            "make": self.make,
            "model": self.model,
            "trim": self.trim,
            "body_class": self.body_class,
            "year_range_start": self.year_range.earliest if self.year_range else None,
            "year_range_end": self.year_range.latest if self.year_range else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("raw", None)
        data["source"] = self.source.value
        data["display_name"] = self.display_name
        return data
