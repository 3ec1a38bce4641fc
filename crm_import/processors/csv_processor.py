"""
Low-level CSV handling: byte-order-mark transcoding, delimiter sniffing and
chunked row streaming with pandas.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import pandas as pd

from crm_import.domain.imports.errors import ImportStreamError
from crm_import.domain.imports.headers import duplicate_keys, normalize_cell, normalize_key, normalize_row_keys

logger = logging.getLogger(__name__)

UTF16_LE_BOM = b"\xff\xfe"
UTF16_BE_BOM = b"\xfe\xff"

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
DEFAULT_DELIMITER = ","


@dataclass(frozen=True)
class SourceFile:
    """A readable UTF-8 file together with its detected delimiter."""

    path: str
    delimiter: str


@dataclass(frozen=True)
class MalformedRow:
    """A record with more fields than the header.

    ``values`` holds the fields that fit under the header; ``overflow`` the
    rest, joined with the file's delimiter.
    """

    values: Dict[str, str]
    overflow: str
    expected_fields: int

    @property
    def error(self) -> str:
        return (
            f"Malformed CSV record: more than {self.expected_fields} fields "
            f"(unexpected trailing values: {self.overflow!r})"
        )


Row = Union[Dict[str, str], MalformedRow]


def normalize_encoding(path: str) -> str:
    """
    Transcode a UTF-16 file (detected by its byte-order mark) to UTF-8.

    The converted copy is written next to the original as ``<stem>.utf8<suffix>``
    and its path returned. Files without a UTF-16 mark are returned as-is, so
    calling this again on a converted file is a no-op. ``OSError`` propagates.
    """
    source = Path(path)
    with source.open("rb") as handle:
        head = handle.read(4)

    if head.startswith(UTF16_LE_BOM):
        encoding = "utf-16-le"
    elif head.startswith(UTF16_BE_BOM):
        encoding = "utf-16-be"
    else:
        return str(source)

    text = source.read_bytes()[2:].decode(encoding, errors="replace")
    text = text.replace("\ufeff", "")
    target = source.with_name(f"{source.stem}.utf8{source.suffix}")
    target.write_text(text, encoding="utf-8", newline="")
    logger.info("Converted %s from %s to UTF-8 (%s)", source.name, encoding, target.name)
    return str(target)


def _field_count(line: str, delimiter: str) -> int:
    return len(line.split(delimiter))


def detect_delimiter(path: str, sniff_bytes: int = 8192) -> str:
    """
    Pick the most plausible field separator from the first two lines.

    Each candidate splitting the header into more than one field scores the
    header field count, plus twice that count when the second line splits into
    the same number of fields. Highest score wins; ties keep the earlier
    candidate. Comma is the fallback.
    """
    with open(path, "rb") as handle:
        sample = handle.read(sniff_bytes).decode("utf-8", errors="replace")
    if sample.startswith("\ufeff"):
        sample = sample[1:]

    lines = [line for line in sample.splitlines() if line.strip()]
    if not lines:
        return DEFAULT_DELIMITER

    header = lines[0]
    second = lines[1] if len(lines) > 1 else None
    best_delimiter = None
    best_score = 0

    for candidate in CANDIDATE_DELIMITERS:
        header_fields = _field_count(header, candidate)
        if header_fields <= 1:
            continue
        score = header_fields
        if second is not None and _field_count(second, candidate) == header_fields:
            score += header_fields * 2
        if score > best_score:
            best_delimiter = candidate
            best_score = score

    if best_delimiter is None:
        logger.warning("No delimiter candidate split the header of %s; defaulting to comma", Path(path).name)
        return DEFAULT_DELIMITER
    return best_delimiter


def prepare_source(path: str, sniff_bytes: int = 8192) -> SourceFile:
    """Normalize encoding and detect the delimiter for ``path``."""
    try:
        normalized_path = normalize_encoding(path)
        delimiter = detect_delimiter(normalized_path, sniff_bytes=sniff_bytes)
    except OSError as exc:
        raise ImportStreamError(f"Could not read import file {path}: {exc}") from exc
    logger.debug("Using delimiter %r for %s", delimiter, Path(normalized_path).name)
    return SourceFile(path=normalized_path, delimiter=delimiter)


def _open(source: SourceFile):
    return open(source.path, "r", encoding="utf-8", errors="replace", newline="")


def _read_csv(handle, source: SourceFile, **kwargs: Any):
    return pd.read_csv(
        handle,
        sep=source.delimiter,
        engine="python",
        dtype=str,
        keep_default_na=False,
        skipinitialspace=False,
        **kwargs,
    )


def _read_header(source: SourceFile) -> List[str]:
    """Raw header fields of ``source``; empty when the file has no lines."""
    try:
        with _open(source) as handle:
            frame = _read_csv(handle, source, header=None, nrows=1)
    except pd.errors.EmptyDataError:
        return []
    if frame.empty:
        return []
    return [normalize_cell(value) for value in frame.iloc[0].tolist()]


def _overflow_handler(width: int, delimiter: str):
    """Fold every field past ``width`` into the overflow slot of a too-wide line."""

    def _fold(fields: List[str]) -> List[str]:
        extra = fields[width:]
        if not any(normalize_cell(value) for value in extra):
            return fields[:width] + [""]
        return fields[:width] + [delimiter.join(extra)]

    return _fold


@dataclass(frozen=True)
class _Layout:
    header: List[str]
    delimiter: str

    @property
    def width(self) -> int:
        return len(self.header)

    def read(self, handle, source: SourceFile, **kwargs: Any):
        # One extra positional column receives whatever lies past the header,
        # so a trailing delimiter never turns the first column into an index.
        return _read_csv(
            handle,
            source,
            header=None,
            names=list(range(self.width + 1)),
            on_bad_lines=_overflow_handler(self.width, self.delimiter),
            **kwargs,
        )

    def to_row(self, record: Dict[int, Any]) -> Row:
        values = normalize_row_keys((self.header[position], record.get(position)) for position in range(self.width))
        overflow = normalize_cell(record.get(self.width))
        if overflow:
            return MalformedRow(values=values, overflow=overflow, expected_fields=self.width)
        return values


def _layout(source: SourceFile) -> Optional[_Layout]:
    header = _read_header(source)
    if not header:
        return None
    duplicates = duplicate_keys(header)
    if duplicates:
        logger.warning(
            "Duplicate header(s) %s in %s; the first non-empty value of each is used",
            ", ".join(repr(name) for name in duplicates), Path(source.path).name,
        )
    return _Layout(header=header, delimiter=source.delimiter)


def _records(frame: pd.DataFrame, layout: _Layout, skip_header: bool) -> List[Row]:
    records = frame.to_dict("records")
    if skip_header:
        records = records[1:]
    return [layout.to_row(record) for record in records]


@contextmanager
def open_row_stream(source: SourceFile, chunk_size: int = 500) -> Iterator[Iterator[Row]]:
    """
    Open ``source`` and yield an iterator of normalized rows.

    Records wider than the header come out as ``MalformedRow`` in their place
    in the stream; reading carries on past them. The file handle stays open
    for the lifetime of the ``with`` block and is closed on every exit path.
    Read or parse failures of the file itself surface as ``ImportStreamError``,
    whether they happen on open or mid-stream.
    """
    try:
        layout = _layout(source)
        handle = _open(source)
    except OSError as exc:
        raise ImportStreamError(f"Could not open import file {source.path}: {exc}") from exc
    except (ValueError, UnicodeError) as exc:
        raise ImportStreamError(f"Could not parse the header of import file: {exc}") from exc

    def _rows() -> Iterator[Row]:
        if layout is None:
            return
        try:
            reader = layout.read(handle, source, chunksize=chunk_size)
        except pd.errors.EmptyDataError:
            return
        except (OSError, ValueError, UnicodeError) as exc:
            raise ImportStreamError(f"Could not parse import file: {exc}") from exc
        first = True
        try:
            for chunk in reader:
                yield from _records(chunk, layout, skip_header=first)
                first = False
        except pd.errors.EmptyDataError:
            return
        except (OSError, ValueError, UnicodeError) as exc:
            raise ImportStreamError(f"Reading import file failed: {exc}") from exc

    try:
        yield _rows()
    finally:
        handle.close()


def read_preview(source: SourceFile, rows: int = 10) -> Dict[str, Any]:
    """
    Return ``{"headers": [...], "rows": [...]}`` for the first ``rows`` data rows.

    Malformed records are shown with the values that fit under the header.
    """
    try:
        layout = _layout(source)
        if layout is None:
            return {"headers": [], "rows": []}
        with _open(source) as handle:
            frame = layout.read(handle, source, nrows=rows + 1)
    except pd.errors.EmptyDataError:
        return {"headers": [], "rows": []}
    except (OSError, ValueError, UnicodeError) as exc:
        raise ImportStreamError(f"Could not preview import file: {exc}") from exc

    headers = list(dict.fromkeys(key for key in (normalize_key(h) for h in layout.header) if key))
    preview_rows = [
        row.values if isinstance(row, MalformedRow) else row
        for row in _records(frame, layout, skip_header=True)
    ]
    return {"headers": headers, "rows": preview_rows}
