import pytest

from services.exceptions import MalformedInput
from vin.normalizer import normalize
from vin.tables import TRANSLITERATION
from vin.validator import candidate_years, compute_check_digit, validate

VALID_VINS = [
    "1HGCM82633A004352",
    "1FTFW1ET2BFC10312",
    "1M8GDM9AXKP042788",  # check digit X
]

REPLACEMENTS = "0123456789ABCDEFGHJKLMNPRSTUVWXYZ"


def with_check_digit(value: str) -> str:
    return value[:8] + compute_check_digit(value) + value[9:]


@pytest.mark.parametrize("vin", VALID_VINS)
def test_compute_check_digit_matches_position_nine(vin):
    assert compute_check_digit(vin) == vin[8]


@pytest.mark.parametrize("vin", VALID_VINS)
def test_valid_checksum_scores_at_least_sixty(vin):
    result = validate(normalize(vin))

    assert result.is_valid is True
    assert result.checksum_valid is True
    assert result.confidence >= 60


def test_known_vin_scores_full_confidence():
    result = validate("1HGCM82633A004352")

    assert result.confidence == 100
    assert result.wmi_known is True
    assert result.year_plausible is True
    assert result.reasons == []


def test_checksum_mismatch_is_soft_failure():
    result = validate(normalize("1FTFW1ET5BFC10312"))

    assert result.is_valid is True
    assert result.checksum_valid is False
    assert result.confidence == 40  # WMI 25 + year 15
    assert "checksum mismatch at position 9 (expected '2', found '5')" in result.reasons


@pytest.mark.parametrize("vin", VALID_VINS)
@pytest.mark.parametrize("position", [p for p in range(1, 18) if p != 9])
def test_single_character_mutation_keeps_vin_valid_with_checksum_reason(vin, position):
    original = vin[position - 1]
    replacement = next(
        ch for ch in REPLACEMENTS if TRANSLITERATION[ch] != TRANSLITERATION[original]
    )
    mutated = vin[:position - 1] + replacement + vin[position:]

    baseline = validate(vin)
    result = validate(mutated)

    assert result.is_valid is True
    assert result.checksum_valid is False
    assert result.confidence < baseline.confidence
    assert any("checksum" in reason for reason in result.reasons)


@pytest.mark.parametrize("value", ["1HGCM82633A00435", "1HGCM82633A0043521", ""])
def test_wrong_length_raises_malformed_input(value):
    with pytest.raises(MalformedInput):
        validate(value)


def test_disallowed_characters_invalidate_with_reason_per_position():
    result = validate(normalize("1HGCM8263OA004352"))

    assert result.is_valid is False
    assert result.confidence == 0
    assert result.reasons == ["invalid character 'O' at position 10"]


def test_substitutions_are_reported():
    result = validate(normalize("1HGCM82633AOO4352"))

    assert result.is_valid is True
    assert result.confidence == 100
    assert sum("OCR substitution" in reason for reason in result.reasons) == 2


def test_unknown_wmi_with_known_country_scores_region_only():
    result = validate(with_check_digit("1ZZCM82603A004352"))

    assert result.wmi_known is False
    assert result.confidence == 60 + 10 + 15
    assert any("region only" in reason for reason in result.reasons)


def test_unknown_wmi_and_country_scores_nothing_for_manufacturer():
    result = validate(with_check_digit("XAACM82603A004352"))

    assert result.wmi_known is False
    assert result.confidence == 60 + 15
    assert "manufacturer code 'XAA' not recognised" in result.reasons


def test_invalid_year_character():
    result = validate(with_check_digit("1HGCM8260UA004352"))

    assert result.year_plausible is False
    assert result.confidence == 60 + 25
    assert "invalid model year character 'U' at position 10" in result.reasons


def test_year_outside_plausible_range():
    # 'Y' is 2000 or 2030; neither fits a 1990 horizon
    result = validate(with_check_digit("1HGCM8260YA004352"), current_year=1990)

    assert result.year_plausible is False
    assert any("2000/2030" in reason for reason in result.reasons)


def test_candidate_years_span_thirty_years():
    years = candidate_years("B")

    assert (years.earliest, years.latest) == (1981, 2011)
    assert 2011 in years
    assert 1995 not in years
    assert candidate_years("0") is None
