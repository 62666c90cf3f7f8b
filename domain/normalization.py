"""Domain normalization — pure functions, zero external dependencies.

Only stdlib imports allowed.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

_CURRENCY_NOISE = re.compile(r"(RM|USD|EUR|GBP|MYR|[$€£¥])", re.IGNORECASE)
_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
)


def parse_number(value):
    """Parse a human-written number into a Decimal, or None.

    Tolerates currency symbols/codes, thousands separators, surrounding
    whitespace, a trailing percent sign and accounting negatives "(12.50)".
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    text = _CURRENCY_NOISE.sub("", text).replace(",", "").replace(" ", "")
    text = text.rstrip("%")
    if not _NUMBER.match(text):
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return -number if negative else number


def parse_date(value, formats=DATE_FORMATS):
    """Parse a date string with the first matching format, or None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = " ".join(str(value).split())
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def format_decimal(number, decimals=None):
    """Render a Decimal without exponent notation or trailing zeros."""
    if decimals is not None:
        quantum = Decimal(1).scaleb(-int(decimals))
        return f"{number.quantize(quantum):f}"
    text = f"{number.normalize():f}"
    return text
