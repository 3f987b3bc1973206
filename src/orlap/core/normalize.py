import re
from typing import Optional

# Hyphens, en/em dashes, minus signs and their fullwidth/small forms
DASHES = re.compile(r"[\u2010-\u2015\u2212\uFE58\uFE63\uFF0D]")
# No-break, ogham, mongolian, en/em/thin/hair/zero-width, narrow no-break,
# medium mathematical and ideographic spaces
SPACES = re.compile(r"[\u00A0\u1680\u180E\u2000-\u200B\u202F\u205F\u3000]")
DOUBLE_QUOTES = re.compile(r"[\u201C\u201D\u201E\u201F]")
SINGLE_QUOTES = re.compile(r"[\u2018\u2019\u201A\u201B]")

WHITESPACE_RUN = re.compile(r"\s+")
NUMERIC_NOISE = re.compile(r"[\s\-]")
CUSTOMER_NOISE = re.compile(r"[:\-<>()\s]")
HEADER_NOISE = re.compile(r"[\-/().\[\]:]")


def normalize(raw_text: Optional[str]) -> str:
    """Fold typographic dashes, spaces and quotes to their ASCII forms.

    Total and idempotent: every other character is kept as is.
    """
    if not raw_text:
        return ""
    text = DASHES.sub("-", raw_text)
    text = SPACES.sub(" ", text)
    text = DOUBLE_QUOTES.sub('"', text)
    return SINGLE_QUOTES.sub("'", text)


def collapse_whitespace(value: str) -> str:
    return WHITESPACE_RUN.sub(" ", value).strip()


def clean_numeric(value: str) -> str:
    """Drop spaces and hyphens from phone, account and card numbers."""
    return NUMERIC_NOISE.sub("", value)


def normalize_customer(value: Optional[str]) -> str:
    """Matching key for customer codes: 'pt abc' and 'PT-ABC' both give 'PTABC'."""
    if not value:
        return ""
    return CUSTOMER_NOISE.sub("", str(value)).upper()


def normalize_order(value: Optional[str]) -> str:
    if not value:
        return ""
    return str(value).strip().upper()


def normalize_header(value) -> str:
    """Spreadsheet header key: 'No. Rekening' -> 'no rekening'."""
    text = normalize(str(value) if value is not None else "").lower()
    text = HEADER_NOISE.sub(" ", text)
    return collapse_whitespace(text)
