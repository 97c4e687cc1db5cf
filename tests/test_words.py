from decimal import Decimal

import pytest

from salesdesk.utils.words import arabic_number, default_words, english_number


@pytest.mark.parametrize(
    ("number", "expected"),
    [
        (0, "zero"),
        (15, "fifteen"),
        (42, "forty-two"),
        (300, "three hundred"),
        (1234, "one thousand two hundred thirty-four"),
        (2500000, "two million five hundred thousand"),
    ],
)
def test_english_number(number, expected):
    assert english_number(number) == expected


def test_english_amount_with_piasters():
    assert default_words.words(Decimal("1234.50")) == (
        "One thousand two hundred thirty-four Egyptian pounds and fifty piasters"
    )
    assert default_words.words(Decimal("1000000")) == "One million Egyptian pounds"


def test_negative_amount_is_prefixed():
    assert default_words.words(Decimal("-5"), "en") == "Minus five Egyptian pounds"


@pytest.mark.parametrize(
    ("number", "expected"),
    [
        (2000, "ألفان"),
        (25, "خمسة وعشرون"),
        (1500000, "مليون وخمسمائة ألف"),
        (3000, "ثلاثة آلاف"),
    ],
)
def test_arabic_number(number, expected):
    assert arabic_number(number) == expected


def test_arabic_amount_uses_currency_names():
    assert default_words.words(Decimal("2000"), "ar", "EGP") == "ألفان جنيه مصري"
    assert default_words.words(Decimal("10.25"), "ar", "USD") == "عشرة دولار أمريكي وخمسة وعشرون سنت"


def test_unknown_currency_falls_back_to_its_code():
    assert default_words.words(Decimal("7"), "en", "SAR") == "Seven SAR"
