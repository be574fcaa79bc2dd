"""
Helpers for turning dictated text into the literal form a field expects.

Speech recognizers transcribe what was said, so an email comes through
as "alex at example dot com" and a phone number as "five five five ...".
"""

from __future__ import annotations

import math
import re

DIGIT_WORDS: dict[str, str] = {
    "zero": "0", "oh": "0", "one": "1", "two": "2", "three": "3",
    "four": "4", "five": "5", "six": "6", "seven": "7", "eight": "8",
    "nine": "9",
}

NUMBER_WORDS: dict[str, int] = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14,
    "fifteen": 15, "sixteen": 16, "seventeen": 17, "eighteen": 18,
    "nineteen": 19, "twenty": 20,
}

# local part, then "@" or the word "at", then a dotted domain ("." or "dot")
SPOKEN_EMAIL_RE = re.compile(
    r"\b([a-z0-9._%+-]+)\s*(?:@|\bat\b)\s*"
    r"([a-z0-9-]+(?:\s*(?:\.|\bdot\b)\s*[a-z0-9-]+)+)",
    re.IGNORECASE,
)

# one "@"-bearing token: something on both sides of a single "@"
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")
LITERAL_EMAIL_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9-]+(?:\.[a-z0-9-]+)+", re.IGNORECASE)

_DOT_RE = re.compile(r"\s*(?:\.|\bdot\b)\s*", re.IGNORECASE)
_DIGIT_WORD_RE = re.compile(r"\b(" + "|".join(DIGIT_WORDS) + r")\b", re.IGNORECASE)
_PHONE_SEPARATORS_RE = re.compile(r"[\s().+-]")


def find_spoken_email(text: str) -> str | None:
    """Return the first email address in ``text``, literal ones preferred."""
    literal = LITERAL_EMAIL_RE.search(text)
    if literal:
        return literal.group(0).lower().strip(".")

    match = SPOKEN_EMAIL_RE.search(text)
    if not match:
        return None
    local, domain = match.group(1), match.group(2)
    domain = _DOT_RE.sub(".", domain)
    return f"{local}@{domain}".lower().strip(".")


def spoken_digits(text: str) -> str:
    """Replace digit words with digits ("five five" -> "5 5")."""
    return _DIGIT_WORD_RE.sub(lambda m: DIGIT_WORDS[m.group(1).lower()], text)


def strip_phone_separators(value: str) -> str:
    return _PHONE_SEPARATORS_RE.sub("", value)


def parse_number(token: str) -> float | None:
    """Parse a digit string or a number word up to twenty."""
    cleaned = token.strip().lower().rstrip(".,")
    if cleaned in NUMBER_WORDS:
        return float(NUMBER_WORDS[cleaned])
    try:
        number = float(cleaned.replace(",", ""))
    except ValueError:
        return None
    # float() also takes "nan", "inf" and overflowing exponents
    return number if math.isfinite(number) else None


def format_number(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)
