"""
Value normalization service.

Turns heterogeneous spreadsheet cells (currency strings, locale specific
separators, native dates, date-like strings) into plain floats and datetimes.

Both conversions are driven by ordered rule tables so that every heuristic
branch has a name and its own unit tests. The first matching rule wins.
"""
import logging
import math
import numbers
import re
import warnings
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

_NOT_NUMERIC_CHARS = re.compile(r"[^\d.,\-]")
_COMMA_DECIMAL = re.compile(r"^[^,]*,\d{1,3}$")
_DIGITS_AND_SEPARATORS = re.compile(r"^[\d\s./,+\-]+$")
_EPOCH = re.compile(r"^\d{10}(\d{3})?$")
_ISO_PREFIX = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})")
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})$")
_DIGIT_GROUPS = re.compile(r"\d+")
_MONTH_NAME = re.compile(
    r"\b(jan|feb|fev|mar|apr|abr|may|mai|jun|jul|aug|ago|sep|set|oct|out|nov|dec|dez)[a-zç]*\.?\b",
    re.IGNORECASE,
)


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float):
        return math.isnan(value)
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def _clean_numeric_text(text: str) -> str:
    """Keep digits, '.', ',' and a leading minus sign."""
    kept = _NOT_NUMERIC_CHARS.sub("", text)
    cleaned = kept.replace("-", "")
    return f"-{cleaned}" if kept.startswith("-") and cleaned else cleaned


def _rule_mixed_separators(cleaned: str) -> Optional[str]:
    # The separator that appears last is the decimal one: "1.234,56" and "1,234.56"
    if "." not in cleaned or "," not in cleaned:
        return None
    if cleaned.rfind(",") > cleaned.rfind("."):
        return cleaned.replace(".", "").replace(",", ".")
    return cleaned.replace(",", "")


def _rule_comma_decimal(cleaned: str) -> Optional[str]:
    # "1234,56", "12,345" (read as 12.345)
    if "," in cleaned and "." not in cleaned and _COMMA_DECIMAL.match(cleaned):
        return cleaned.replace(",", ".")
    return None


def _rule_comma_thousands(cleaned: str) -> Optional[str]:
    # "1,234,567"
    if "," in cleaned and "." not in cleaned:
        return cleaned.replace(",", "")
    return None


def _rule_plain(cleaned: str) -> Optional[str]:
    return cleaned


NUMBER_RULES: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ("mixed_separators", _rule_mixed_separators),
    ("comma_decimal", _rule_comma_decimal),
    ("comma_thousands", _rule_comma_thousands),
    ("plain", _rule_plain),
]


def match_number_rule(text: str) -> Tuple[str, str]:
    """Return (rule name, canonical numeric text) for a raw string."""
    cleaned = _clean_numeric_text(text)
    for name, rule in NUMBER_RULES:
        normalized = rule(cleaned)
        if normalized is not None:
            return name, normalized
    return "plain", cleaned


def to_number(value: Any) -> float:
    """
    Convert a numeric-looking cell to a float.

    Never raises: missing values and anything unparseable become 0.
    Numbers pass through unchanged.
    """
    if is_missing(value):
        return 0
    if isinstance(value, numbers.Number) and not isinstance(value, bool):
        number = float(value)
        return value if math.isfinite(number) else 0

    _, normalized = match_number_rule(str(value))
    try:
        number = float(normalized)
    except ValueError:
        return 0
    return number if math.isfinite(number) else 0


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def _expand_year(year: int) -> int:
    if year >= 100:
        return year
    # Same pivot as strptime's %y
    return 2000 + year if year < 69 else 1900 + year


def _rule_native(value: Any, text: str, day_first: bool) -> Optional[datetime]:
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def _rule_epoch(value: Any, text: str, day_first: bool) -> Optional[datetime]:
    if not _EPOCH.match(text):
        return None
    stamp = int(text)
    seconds = stamp / 1000 if len(text) == 13 else stamp
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def _rule_iso(value: Any, text: str, day_first: bool) -> Optional[datetime]:
    match = _ISO_PREFIX.match(text)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        parsed = datetime(year, month, day)
    except ValueError:
        return None
    rest = text[match.end():]
    if rest:
        # Keep the time part when the full string is a valid ISO timestamp
        try:
            full = datetime.fromisoformat(text.replace("/", "-").replace("Z", "+00:00"))
            return full.replace(tzinfo=None)
        except ValueError:
            pass
    return parsed


def _rule_day_month_year(value: Any, text: str, day_first: bool) -> Optional[datetime]:
    match = _DAY_MONTH_YEAR.match(text)
    if not match:
        return None
    first, second, year = int(match.group(1)), int(match.group(2)), _expand_year(int(match.group(3)))
    if first > 12 and second > 12:
        return None
    if first > 12:
        day, month = first, second
    elif second > 12:
        day, month = second, first
    elif day_first:
        day, month = first, second
    else:
        day, month = second, first
    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def _parse_generic(text: str, day_first: bool) -> Optional[datetime]:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(text, errors="coerce", dayfirst=day_first)
        except (ValueError, TypeError, OverflowError):
            return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.to_pydatetime().replace(tzinfo=None)


def _rule_month_name(value: Any, text: str, day_first: bool) -> Optional[datetime]:
    if not _MONTH_NAME.search(text):
        return None
    return _parse_generic(text, day_first)


def _rule_generic(value: Any, text: str, day_first: bool) -> Optional[datetime]:
    # Digit-only strings already had their chance above ("2024", "1.000,50").
    # A lone number among letters is a code ("T2", "1st", "Lote 7"), not a date.
    if _DIGITS_AND_SEPARATORS.match(text) or len(_DIGIT_GROUPS.findall(text)) < 2:
        return None
    return _parse_generic(text, day_first)


DATE_RULES = [
    ("native", _rule_native),
    ("epoch", _rule_epoch),
    ("iso", _rule_iso),
    ("day_month_year", _rule_day_month_year),
    ("month_name", _rule_month_name),
    ("generic", _rule_generic),
]


def match_date_rule(value: Any, day_first: bool = True) -> Tuple[Optional[str], Optional[datetime]]:
    """Return the name of the first rule that recognizes the value, and the date it produced."""
    if is_missing(value) or isinstance(value, bool):
        return None, None
    if isinstance(value, numbers.Number):
        # Integral epoch values coming from typed CSV columns
        if isinstance(value, float) and not value.is_integer():
            return None, None
        text = str(int(value))
    else:
        text = str(value).strip()

    for name, rule in DATE_RULES:
        parsed = rule(value, text, day_first)
        if parsed is not None:
            return name, parsed
    return None, None


def parse_flexible_date(value: Any, day_first: bool = True) -> Optional[datetime]:
    """Parse a cell into a datetime, or None when it does not look like a date."""
    _, parsed = match_date_rule(value, day_first)
    return parsed


def looks_like_date(value: Any, day_first: bool = True) -> bool:
    return parse_flexible_date(value, day_first) is not None
