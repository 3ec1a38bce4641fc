"""
Date parsing utilities for flexible date format handling.

Spreadsheet exports carry dates in every imaginable shape; these helpers turn
them into calendar dates with pandas doing the heavy lifting.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, List, Optional

import pandas as pd

from crm_import.core.config import settings

logger = logging.getLogger(__name__)

_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{2,4})")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _prefers_dayfirst(first: int, second: int, default: bool) -> bool:
    """Decide whether ``first/second/...`` is more plausibly day-first."""
    if first > 12 and second <= 31:
        return True
    if second > 12 and first <= 12:
        return False
    return default


def parse_calendar_date(value: Any, *, dayfirst: Optional[bool] = None) -> Optional[date]:
    """
    Parse a date value from various formats and return a ``datetime.date``.

    Supports ISO 8601 (``2025-10-20``, ``2025-10-20T08:00:00Z``), numeric
    day-first or month-first dates (``20/10/2025``, ``10/20/2025``), and
    anything pandas can infer (``Oct 20 2025``).

    Returns None when the value is empty or cannot be parsed; never raises.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, float) and pd.isna(value):
        return None

    text = str(value).strip()
    if not text:
        return None

    default_dayfirst = settings.date_default_dayfirst if dayfirst is None else dayfirst
    attempts: List[Callable[[str], Any]] = []

    if _ISO_DATE_RE.match(text):
        attempts.append(lambda v: pd.to_datetime(v, errors="raise"))
    else:
        numeric_match = _NUMERIC_DATE_RE.match(text)
        if numeric_match:
            preferred = _prefers_dayfirst(
                int(numeric_match.group(1)), int(numeric_match.group(2)), default_dayfirst
            )
            attempts.append(lambda v, df=preferred: pd.to_datetime(v, dayfirst=df, errors="raise"))
            attempts.append(lambda v, df=not preferred: pd.to_datetime(v, dayfirst=df, errors="raise"))

    attempts.append(lambda v: pd.to_datetime(v, errors="raise"))

    for attempt in attempts:
        try:
            parsed = attempt(text)
        except (ValueError, TypeError, OverflowError):
            continue
        if parsed is None or pd.isna(parsed):
            continue
        return parsed.date()

    logger.debug("Could not parse date value '%s'", text)
    return None
