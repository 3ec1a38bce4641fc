"""
Normalization of CSV header names and row keys.

The same function cleans both the source-column side of a mapping and the keys
of every parsed row; if the two ever diverge, mapping lookups silently miss.
"""
import re
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

import pandas as pd

# Zero-width space/joiners, word joiner, BOM and non-breaking space
_INVISIBLE_RE = re.compile("[\u200b\u200c\u200d\u2060\ufeff\u00a0]")
_QUOTES = ('"', "'")


def normalize_key(name: Any) -> str:
    """Clean one header or mapping source-column name."""
    if name is None:
        return ""
    text = str(name)
    if text.startswith("\ufeff"):
        text = text[1:]
    text = _INVISIBLE_RE.sub("", text).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
        text = text[1:-1]
    return text.strip()


def normalize_cell(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str) and pd.isna(value):
        return ""
    return str(value).strip()


def duplicate_keys(headers: Iterable[Any]) -> List[str]:
    """Normalized header names that occur more than once, in first-seen order."""
    seen = set()
    duplicates: List[str] = []
    for header in headers:
        key = normalize_key(header)
        if not key:
            continue
        if key in seen and key not in duplicates:
            duplicates.append(key)
        seen.add(key)
    return duplicates


def normalize_row_keys(row: Union[Mapping[Any, Any], Iterable[Tuple[Any, Any]]]) -> Dict[str, str]:
    """
    Return a copy of ``row`` with normalized keys and trimmed string values.

    ``row`` may be a mapping or a sequence of ``(header, value)`` pairs. When
    several columns normalize to the same key, the first non-empty value wins.
    """
    pairs = row.items() if isinstance(row, Mapping) else row
    normalized: Dict[str, str] = {}
    for key, value in pairs:
        clean_key = normalize_key(key)
        if not clean_key:
            continue
        cell = normalize_cell(value)
        if normalized.get(clean_key) or (clean_key in normalized and not cell):
            continue
        normalized[clean_key] = cell
    return normalized
