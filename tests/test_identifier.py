import pytest

from models.identifier import document_filename, is_valid_identifier, parse_identifiers


def test_eight_digits_is_valid():
    assert is_valid_identifier("20233489")
    assert is_valid_identifier("00000000")


@pytest.mark.parametrize("value", [
    "",
    "2023348",
    "202334890",
    "2023348a",
    "2023 3489",
    " 20233489",
    "20233489\n",
    "２０２３３４８９",  # full-width digits
    "٢٠٢٣٣٤٨٩",  # Arabic-Indic digits
    None,
    20233489,
])
def test_everything_else_is_invalid(value):
    assert not is_valid_identifier(value)


def test_document_filename():
    assert document_filename("20233489") == "Document_20233489.pdf"


def test_parse_drops_header_and_malformed_lines():
    assert parse_identifiers("CUI\n20233489\n2023348\n20228741") == ["20233489", "20228741"]


def test_parse_accepts_crlf_and_blank_lines():
    text = "CUI\r\n20233489\r\n\r\n   \r\n20228741\r\n"
    assert parse_identifiers(text) == ["20233489", "20228741"]


def test_parse_takes_first_field_only():
    text = "cui,nombre\n20233489,Ana Gabriela\n20228741;Luis\n20215634\tCS\n\"20191234\",x"
    assert parse_identifiers(text) == ["20233489", "20228741", "20215634", "20191234"]


def test_parse_keeps_duplicates_in_order():
    assert parse_identifiers("20228741\n20233489\n20228741") == ["20228741", "20233489", "20228741"]


def test_parse_with_nothing_valid():
    assert parse_identifiers("") == []
    assert parse_identifiers("CUI\nabc\n1234") == []
