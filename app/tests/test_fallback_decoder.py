from vin.fallback import FallbackDecoder
from vin.normalizer import normalize
from vin.types import DecodeSource, YearRange


def test_decodes_make_and_year_range_from_structure():
    partial = FallbackDecoder().decode_fallback(normalize("1FTFW1ET5BFC10312"))

    assert partial.make == "Ford"
    assert partial.year_range == YearRange(1981, 2011)
    assert partial.country == "United States"
    assert partial.region == "North America"
    assert partial.source == DecodeSource.FALLBACK


def test_never_guesses_model_or_trim():
    partial = FallbackDecoder().decode_fallback(normalize("1HGCM82633A004352"))

    assert not hasattr(partial, "model")
    assert not hasattr(partial, "trim")


def test_unknown_wmi_keeps_country_only():
    partial = FallbackDecoder().decode_fallback(normalize("1ZZCM82603A004352"))

    assert partial.make is None
    assert partial.country == "United States"
    assert partial.year_range == YearRange(2003, 2033)


def test_non_year_character_gives_no_range():
    partial = FallbackDecoder().decode_fallback(normalize("WBA3A5C50UF123456"))

    assert partial.make == "BMW"
    assert partial.country == "Germany"
    assert partial.region == "Europe"
    assert partial.year_range is None
