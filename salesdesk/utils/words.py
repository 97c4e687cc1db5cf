from decimal import ROUND_HALF_EVEN, Decimal
from typing import List

from ..core.ports import AmountWords

EN_ONES = [
    "zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine", "ten",
    "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen", "seventeen", "eighteen", "nineteen",
]
EN_TENS = ["", "", "twenty", "thirty", "forty", "fifty", "sixty", "seventy", "eighty", "ninety"]
EN_SCALES = [(10 ** 9, "billion"), (10 ** 6, "million"), (10 ** 3, "thousand")]

AR_ONES = [
    "", "واحد", "اثنان", "ثلاثة", "أربعة", "خمسة", "ستة", "سبعة", "ثمانية", "تسعة", "عشرة",
    "أحد عشر", "اثنا عشر", "ثلاثة عشر", "أربعة عشر", "خمسة عشر", "ستة عشر", "سبعة عشر", "ثمانية عشر", "تسعة عشر",
]
AR_TENS = ["", "", "عشرون", "ثلاثون", "أربعون", "خمسون", "ستون", "سبعون", "ثمانون", "تسعون"]
AR_HUNDREDS = ["", "مائة", "مائتان", "ثلاثمائة", "أربعمائة", "خمسمائة", "ستمائة", "سبعمائة", "ثمانمائة", "تسعمائة"]
# (value, singular, dual, plural for 3..10)
AR_SCALES = [
    (10 ** 9, "مليار", "ملياران", "مليارات"),
    (10 ** 6, "مليون", "مليونان", "ملايين"),
    (10 ** 3, "ألف", "ألفان", "آلاف"),
]

CURRENCY_NAMES = {
    "EGP": {"en": ("Egyptian pounds", "piasters"), "ar": ("جنيه مصري", "قرش")},
    "USD": {"en": ("US dollars", "cents"), "ar": ("دولار أمريكي", "سنت")},
}


def _en_below_thousand(number: int) -> str:
    parts: List[str] = []
    hundreds, rest = divmod(number, 100)
    if hundreds:
        parts.append(f"{EN_ONES[hundreds]} hundred")
    if rest:
        if rest < 20:
            parts.append(EN_ONES[rest])
        else:
            tens, ones = divmod(rest, 10)
            parts.append(EN_TENS[tens] + (f"-{EN_ONES[ones]}" if ones else ""))
    return " ".join(parts)


def english_number(number: int) -> str:
    if number == 0:
        return EN_ONES[0]
    parts: List[str] = []
    for scale, name in EN_SCALES:
        if number >= scale:
            count, number = divmod(number, scale)
            parts.append(f"{english_number(count)} {name}")
    if number:
        parts.append(_en_below_thousand(number))
    return " ".join(parts)


def _ar_below_thousand(number: int) -> str:
    parts: List[str] = []
    hundreds, rest = divmod(number, 100)
    if hundreds:
        parts.append(AR_HUNDREDS[hundreds])
    if rest:
        if rest < 20:
            parts.append(AR_ONES[rest])
        else:
            tens, ones = divmod(rest, 10)
            parts.append(f"{AR_ONES[ones]} و{AR_TENS[tens]}" if ones else AR_TENS[tens])
    return " و".join(parts)


def arabic_number(number: int) -> str:
    if number == 0:
        return "صفر"
    parts: List[str] = []
    for scale, singular, dual, plural in AR_SCALES:
        if number >= scale:
            count, number = divmod(number, scale)
            if count == 1:
                parts.append(singular)
            elif count == 2:
                parts.append(dual)
            elif count <= 10:
                parts.append(f"{arabic_number(count)} {plural}")
            else:
                parts.append(f"{arabic_number(count)} {singular}")
    if number:
        parts.append(_ar_below_thousand(number))
    return " و".join(parts)


class WordsConverter(AmountWords):
    """Spells an amount out in English or Arabic with its currency unit names."""

    def words(self, amount: Decimal, language: str = "en", currency: str = "EGP") -> str:
        value = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_EVEN)
        negative = value < 0
        whole, fraction = divmod(abs(int(value * 100)), 100)
        lang = "ar" if language == "ar" else "en"
        major, minor = CURRENCY_NAMES.get(currency, {}).get(lang, (currency, ""))
        if lang == "ar":
            text = f"{arabic_number(whole)} {major}"
            if fraction:
                text += f" و{arabic_number(fraction)} {minor or currency}"
            return f"سالب {text}" if negative else text
        text = f"{english_number(whole)} {major}"
        if fraction:
            text += f" and {english_number(fraction)} {minor or currency}"
        text = text[0].upper() + text[1:]
        return f"Minus {text[0].lower() + text[1:]}" if negative else text


default_words = WordsConverter()
