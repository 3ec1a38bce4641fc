"""
Named value transformations a structured mapping entry may request.

Every transformation is total: any string (including the empty string) goes in
and a value comes out, nothing raises.
"""
import logging
import re
from typing import Any, Callable, Dict, Optional

from crm_import.utils.date import parse_calendar_date

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def split_name_first(value: Any) -> str:
    parts = _text(value).split()
    return parts[0] if parts else ""


def split_name_last(value: Any) -> str:
    parts = _text(value).split()
    return " ".join(parts[1:])


def normalize_date(value: Any) -> Any:
    """ISO calendar date on success, otherwise the original value."""
    parsed = parse_calendar_date(value)
    return parsed.isoformat() if parsed is not None else value


def normalize_status(value: Any) -> str:
    return _WHITESPACE_RE.sub("_", _text(value).lower())


def normalize_phone(value: Any) -> str:
    text = _text(value)
    digits = re.sub(r"\D", "", text)
    return f"+{digits}" if text.startswith("+") else digits


def to_number(value: Any) -> Any:
    """Strip everything but digits, dot and minus, then parse as float."""
    cleaned = _NON_NUMERIC_RE.sub("", _text(value))
    try:
        return float(cleaned)
    except ValueError:
        return value


def to_lowercase(value: Any) -> str:
    return _text(value).casefold()


TRANSFORMATIONS: Dict[str, Callable[[Any], Any]] = {
    "split_name_first": split_name_first,
    "split_name_last": split_name_last,
    "normalize_date": normalize_date,
    "normalize_status": normalize_status,
    "normalize_phone": normalize_phone,
    "to_number": to_number,
    "to_lowercase": to_lowercase,
}


def apply_transformation(name: Optional[str], value: Any) -> Any:
    """Apply the named transformation; unknown or missing names only trim the value."""
    if not name:
        return _text(value)
    transform = TRANSFORMATIONS.get(name)
    if transform is None:
        logger.debug("Unknown transformation '%s' skipped", name)
        return _text(value)
    return transform(value)
