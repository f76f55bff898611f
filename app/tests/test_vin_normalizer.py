import pytest

from services.exceptions import MalformedInput
from vin.normalizer import normalize


def test_uppercases_and_strips_separators():
    result = normalize(" 1ftfw1et5-bfc 10312\n")

    assert result.value == "1FTFW1ET5BFC10312"
    assert result.substitutions == ()
    assert result.ambiguous_positions == ()


def test_parts_accessors():
    vin = normalize("1HGCM82633A004352")

    assert vin.wmi == "1HG"
    assert vin.vds == "CM826"
    assert vin.check_digit == "3"
    assert vin.year_code == "3"
    assert vin.plant_code == "A"
    assert vin.serial == "004352"
    assert str(vin) == "1HGCM82633A004352"


def test_ocr_letters_mapped_when_result_is_valid():
    result = normalize("1HGCM82633AOO4352")

    assert result.value == "1HGCM82633A004352"
    assert [(s.position, s.original, s.replacement) for s in result.substitutions] == [
        (12, "O", "0"),
        (13, "O", "0"),
    ]
    assert result.ambiguous_positions == ()


def test_i_and_q_mapped():
    result = normalize("IHGCM82633A0Q4352")

    assert result.value == "1HGCM82633A004352"
    assert {s.original for s in result.substitutions} == {"I", "Q"}


def test_ambiguous_left_untouched_when_mapping_breaks_year_character():
    # Position 10 'O' would become '0', which is not a model-year character
    result = normalize("1HGCM8263OA004352")

    assert result.value == "1HGCM8263OA004352"
    assert result.substitutions == ()
    assert result.ambiguous_positions == (10,)


@pytest.mark.parametrize("raw", ["1FTFW1ET5BFC1031", "1FTFW1ET5BFC103122", "", "----", None])
def test_wrong_length_raises_malformed_input(raw):
    with pytest.raises(MalformedInput) as exc_info:
        normalize(raw)

    assert exc_info.value.length != 17


def test_malformed_input_lists_offending_characters():
    with pytest.raises(MalformedInput) as exc_info:
        normalize("1FTFW1ETOBFC1031")

    err = exc_info.value
    assert err.value == "1FTFW1ETOBFC1031"
    assert err.length == 16
    assert err.offending == [(9, "O")]
    assert err.to_dict()["offending"] == [{"position": 9, "character": "O"}]


def test_malformed_input_reports_stripped_separators():
    with pytest.raises(MalformedInput) as exc_info:
        normalize("1FT-FW1*ET5 BFC1031")

    err = exc_info.value
    assert err.value == "1FTFW1ET5BFC1031"
    assert err.stripped == [(4, "-"), (8, "*")]
    assert err.to_dict()["stripped"] == [
        {"position": 4, "character": "-"},
        {"position": 8, "character": "*"},
    ]


def test_stripped_is_empty_without_separators():
    with pytest.raises(MalformedInput) as exc_info:
        normalize("1FTFW1ET5BFC1031")

    assert exc_info.value.stripped == []
