"""Helpers turning raw page text into prices, locations and comparable names."""
from __future__ import annotations

from datetime import date
import re
from typing import Optional

PRICE_PATTERN = re.compile(r"(?:US\$|\$|USD\s?|€|£)\s?(\d[\d,]*(?:\.\d+)?)", re.IGNORECASE)
DISTANCE_SUFFIX_PATTERN = re.compile(
    r"(?:\s+-\s+[\d.,]+\s*(?:mi|miles|km|kilometers)\s+away)+\s*$", re.IGNORECASE
)
_WHITESPACE = re.compile(r"\s+")

_MONTHS = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def collapse_whitespace(text: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def parse_currency(text: Optional[str]) -> Optional[float]:
    """Return the first currency amount in ``text`` with separators removed."""

    if not text:
        return None
    match = PRICE_PATTERN.search(text)
    if not match:
        return None
    try:
        return float(match.group(1).replace(",", ""))
    except ValueError:
        return None


def extract_price_text(text: Optional[str]) -> Optional[str]:
    """Return the raw currency expression (``"$1,234"``) found in ``text``."""

    if not text:
        return None
    match = PRICE_PATTERN.search(text)
    return match.group(0).strip() if match else None


def clean_location(raw: Optional[str]) -> str:
    """Drop trailing distance annotations such as ``" - 5385.12 mi away"``."""

    location = collapse_whitespace(raw)
    return DISTANCE_SUFFIX_PATTERN.sub("", location).strip()


def normalise_name(text: Optional[str]) -> str:
    return collapse_whitespace(text).lower()


def names_match(candidate: Optional[str], target: Optional[str]) -> bool:
    """Loose property-name match: either normalised string contains the other."""

    left = normalise_name(candidate)
    right = normalise_name(target)
    if not left or not right:
        return False
    return left in right or right in left


def long_date_label(value: date) -> str:
    """Calendar cell label form, e.g. ``"November 26, 2025"``."""

    return f"{_MONTHS[value.month - 1]} {value.day}, {value.year}"


def short_date_label(value: date) -> str:
    """Date input display form, e.g. ``"Nov 26"``."""

    return f"{_MONTHS[value.month - 1][:3]} {value.day}"
