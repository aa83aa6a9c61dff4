"""Overdue Reminder - Source File Loader.

Streams an AR export into :class:`CsvChunk` objects so large files are
ingested incrementally rather than read into memory in one go.

Supported data sources
~~~~~~~~~~~~~~~~~~~~~~
* **CSV** -- file path, raw ``bytes``, or an open text stream.  The first
  row is the header row; blank lines are skipped.
* **XLSX** -- file path or bytes buffer, read with openpyxl in read-only
  mode.  Row 1 of the chosen sheet is the header row; fully empty rows
  are skipped.

Usage::

    from overdue_reminder.data_loader import load_upload

    session = load_upload("data/ar_overdue.csv")
    print(session.headers)
    print(session.field_map.to_dict())
"""

from __future__ import annotations

import csv
import io
import logging
from pathlib import Path
from typing import IO, Iterator, Mapping, Optional, Union

import openpyxl

from .ingest import UploadSession
from .models import CsvChunk, FieldMap, RawRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE = 500

_XLSX_SUFFIXES = {".xlsx", ".xlsm"}

Source = Union[str, Path, bytes, IO]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_blank(record: Mapping) -> bool:
    """True when every cell of the record is empty."""
    for val in record.values():
        if val is None:
            continue
        if isinstance(val, str) and not val.strip():
            continue
        return False
    return True


def _header_names(cells) -> list[str]:
    """Stringify header cells; unnamed columns get a positional name."""
    names: list[str] = []
    for idx, val in enumerate(cells):
        text = str(val).strip() if val is not None else ""
        names.append(text or f"Column {idx + 1}")
    return names


def _check_path(path: Path) -> Path:
    if not path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")
    return path


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

def iter_csv_chunks(
    source: Source,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8-sig",
    delimiter: str = ",",
) -> Iterator[CsvChunk]:
    """Yield CSV records in chunks of at most *chunk_size*.

    Args:
        source: File path, raw bytes, or an open text stream.
        chunk_size: Maximum records per chunk.
        encoding: Used for paths and bytes.  ``utf-8-sig`` strips an Excel BOM.
        delimiter: Field delimiter.

    Raises:
        FileNotFoundError: If *source* is a path that does not exist.
        csv.Error: On malformed CSV; the upload is abandoned.
    """
    chunk_size = max(int(chunk_size), 1)

    if isinstance(source, (str, Path)):
        path = _check_path(Path(source))
        logger.info("Reading CSV file: %s", path)
        with open(path, "r", encoding=encoding, newline="") as f:
            yield from _read_csv(f, chunk_size, delimiter)
    elif isinstance(source, bytes):
        stream = io.StringIO(source.decode(encoding), newline="")
        yield from _read_csv(stream, chunk_size, delimiter)
    else:
        yield from _read_csv(source, chunk_size, delimiter)


def _read_csv(stream: IO[str], chunk_size: int, delimiter: str) -> Iterator[CsvChunk]:
    reader = csv.DictReader(stream, delimiter=delimiter)
    fields = [f.strip() for f in (reader.fieldnames or [])]
    reader.fieldnames = fields

    batch: list[RawRecord] = []
    blank = 0
    yielded = False
    for record in reader:
        # Overflow cells land under the None key; they belong to no header
        record.pop(None, None)
        if _is_blank(record):
            blank += 1
            continue
        batch.append(record)
        if len(batch) >= chunk_size:
            yield CsvChunk(data=batch, fields=list(fields))
            yielded = True
            batch = []

    # A header-only file still delivers its header list
    if batch or not yielded:
        yield CsvChunk(data=batch, fields=list(fields))

    if blank:
        logger.debug("Skipped %d blank CSV lines", blank)


# ---------------------------------------------------------------------------
# XLSX
# ---------------------------------------------------------------------------

def iter_xlsx_chunks(
    source: Union[str, Path, IO[bytes]],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    sheet_name: str | None = None,
) -> Iterator[CsvChunk]:
    """Yield worksheet rows as header-keyed records.

    Args:
        source: File path or a readable bytes buffer.
        chunk_size: Maximum records per chunk.
        sheet_name: Worksheet to read.  The first sheet when empty.

    Raises:
        FileNotFoundError: If *source* is a path that does not exist.
        ValueError: If *sheet_name* is not in the workbook.
    """
    chunk_size = max(int(chunk_size), 1)

    if isinstance(source, (str, Path)):
        source = _check_path(Path(source))
        logger.info("Opening XLSX file: %s", source)
    else:
        logger.info("Opening XLSX from bytes buffer")

    wb = openpyxl.load_workbook(source, read_only=True, data_only=True)
    try:
        if sheet_name:
            if sheet_name not in wb.sheetnames:
                raise ValueError(
                    f"Sheet {sheet_name!r} not found; available: {wb.sheetnames}"
                )
            ws = wb[sheet_name]
        else:
            ws = wb.worksheets[0]

        rows = ws.iter_rows(values_only=True)
        header_cells = next(rows, None)
        if header_cells is None:
            yield CsvChunk(data=[], fields=[])
            return
        fields = _header_names(header_cells)

        batch: list[RawRecord] = []
        for values in rows:
            record = dict(zip(fields, values))
            if _is_blank(record):
                continue
            batch.append(record)
            if len(batch) >= chunk_size:
                yield CsvChunk(data=batch, fields=list(fields))
                batch = []

        yield CsvChunk(data=batch, fields=list(fields))
    finally:
        wb.close()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def iter_chunks(
    path: str | Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8-sig",
    delimiter: str = ",",
    sheet_name: str | None = None,
) -> Iterator[CsvChunk]:
    """Pick the CSV or XLSX reader from the file suffix."""
    path = Path(path)
    if path.suffix.lower() in _XLSX_SUFFIXES:
        return iter_xlsx_chunks(path, chunk_size=chunk_size, sheet_name=sheet_name)
    return iter_csv_chunks(path, chunk_size=chunk_size, encoding=encoding, delimiter=delimiter)


def load_upload(
    path: str | Path,
    field_map: Optional[FieldMap] = None,
    aliases: Mapping[str, list[str]] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8-sig",
    delimiter: str = ",",
    sheet_name: str | None = None,
) -> UploadSession:
    """Stream a source file into a fresh UploadSession.

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    path = _check_path(Path(path))
    session = UploadSession(field_map=field_map, aliases=aliases)

    chunks = 0
    for chunk in iter_chunks(
        path,
        chunk_size=chunk_size,
        encoding=encoding,
        delimiter=delimiter,
        sheet_name=sheet_name,
    ):
        session.add_chunk(chunk)
        chunks += 1

    logger.info(
        "Loaded %s: %d records in %d chunks, %d rows kept, %d skipped",
        path.name, session.record_count, chunks, len(session.rows), session.skipped_count,
    )
    return session
