"""Raw record ingestion.

Turns parser output (header -> cell dicts) into :class:`NormalizedRow`
objects using a :class:`FieldMap` and :func:`normalize_amount`.

Rows without a customer are dropped silently; every other problem
(unmapped columns, junk amounts) degrades to an empty value instead of
an exception, so one bad line never aborts the rest of the file.

Usage::

    from overdue_reminder.ingest import UploadSession

    session = UploadSession()
    for chunk in iter_csv_chunks("ar_export.csv"):
        session.add_chunk(chunk)
    ledgers = session.ledgers()
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Iterable, Mapping, Optional

from .aggregator import aggregate, summarize_portfolio
from .column_mapper import auto_map
from .models import CsvChunk, CustomerLedger, FieldMap, NormalizedRow, PortfolioSummary, RawRecord
from .normalizer import normalize_amount

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------

def _cell_text(val) -> str:
    """Convert a cell value to a stripped display string.  None becomes ``""``."""
    if val is None:
        return ""
    if isinstance(val, datetime):
        return val.date().isoformat()
    if isinstance(val, date):
        return val.isoformat()
    if isinstance(val, float):
        if math.isnan(val):
            return ""
        if val.is_integer():
            return str(int(val))
    return str(val).strip()


def _field_value(record: Mapping, field_map: FieldMap, field_name: str):
    """Read a cell by canonical field name; unmapped or missing -> None."""
    header = field_map.get(field_name)
    if not header:
        return None
    return record.get(header)


# ---------------------------------------------------------------------------
# Pure ingestion
# ---------------------------------------------------------------------------

def normalize_record(record: Mapping, field_map: FieldMap) -> Optional[NormalizedRow]:
    """Build a NormalizedRow, or return None when the customer is blank."""
    customer = _cell_text(_field_value(record, field_map, "customer"))
    if not customer:
        return None

    email = _cell_text(_field_value(record, field_map, "email")) or None
    return NormalizedRow(
        customer=customer,
        email=email,
        invoice=_cell_text(_field_value(record, field_map, "invoice")),
        amount=normalize_amount(_field_value(record, field_map, "amount")),
        due_date=_cell_text(_field_value(record, field_map, "due_date")),
    )


def ingest(records: Iterable[Mapping], field_map: FieldMap) -> list[NormalizedRow]:
    """Normalize a batch of records.  Pure; input records are not touched."""
    rows: list[NormalizedRow] = []
    for record in records:
        row = normalize_record(record, field_map)
        if row is not None:
            rows.append(row)
    return rows


# ---------------------------------------------------------------------------
# Streaming ingestion
# ---------------------------------------------------------------------------

class CsvIngestor:
    """Append-only accumulator for chunked parser output.

    Each :meth:`feed` call normalizes only the records it is given; rows
    from earlier chunks are kept as-is and never re-read.
    """

    def __init__(self, field_map: FieldMap) -> None:
        self.field_map = field_map
        self._rows: list[NormalizedRow] = []
        self.records_seen = 0
        self.records_skipped = 0

    def feed(self, records: Iterable[Mapping]) -> list[NormalizedRow]:
        """Normalize one chunk and append it.  Returns the new rows only."""
        added: list[NormalizedRow] = []
        for record in records:
            self.records_seen += 1
            row = normalize_record(record, self.field_map)
            if row is None:
                self.records_skipped += 1
                continue
            added.append(row)
        self._rows.extend(added)
        return added

    @property
    def rows(self) -> tuple[NormalizedRow, ...]:
        return tuple(self._rows)

    def __len__(self) -> int:
        return len(self._rows)


class UploadSession:
    """State for one uploaded file.

    Holds the header list, the raw records (immutable once received), the
    active field map and the normalized rows.  A new upload means a new
    session; sessions are never merged.
    """

    def __init__(
        self,
        field_map: FieldMap | None = None,
        aliases: Mapping[str, list[str]] | None = None,
    ) -> None:
        self._aliases = aliases
        self._explicit_map = field_map
        self._headers: list[str] = []
        self._records: list[RawRecord] = []
        self._ingestor: CsvIngestor | None = (
            CsvIngestor(field_map) if field_map is not None else None
        )

    # --- loading ---

    def add_chunk(self, chunk: CsvChunk) -> list[NormalizedRow]:
        """Accept one chunk from the source reader.

        The first chunk fixes the header list and, unless a map was given
        up front, auto-maps it.
        """
        if not self._headers:
            self._headers = list(chunk.fields) or (
                list(chunk.data[0].keys()) if chunk.data else []
            )
            if self._ingestor is None and self._headers:
                guessed = auto_map(self._headers, self._aliases)
                logger.info("Auto-mapped columns: %s", guessed.to_dict())
                self._ingestor = CsvIngestor(guessed)

        if self._ingestor is None:
            # No headers yet and nothing to map against
            return []

        records = [dict(r) for r in chunk.data]
        self._records.extend(records)
        return self._ingestor.feed(records)

    def override_mapping(self, **overrides: str) -> FieldMap:
        """Replace entries of the active map and rebuild rows from the raw records."""
        new_map = self.field_map.with_overrides(**overrides)
        self._ingestor = CsvIngestor(new_map)
        self._ingestor.feed(self._records)
        logger.info("Column mapping overridden: %s", new_map.to_dict())
        return new_map

    # --- queries ---

    @property
    def headers(self) -> list[str]:
        return list(self._headers)

    @property
    def field_map(self) -> FieldMap:
        if self._ingestor is not None:
            return self._ingestor.field_map
        return self._explicit_map or FieldMap()

    @property
    def rows(self) -> tuple[NormalizedRow, ...]:
        return self._ingestor.rows if self._ingestor is not None else ()

    @property
    def record_count(self) -> int:
        return len(self._records)

    @property
    def skipped_count(self) -> int:
        return self._ingestor.records_skipped if self._ingestor is not None else 0

    def ledgers(self, as_of: date | None = None) -> dict[str, CustomerLedger]:
        return aggregate(self.rows, as_of=as_of)

    def summary(self, as_of: date | None = None) -> PortfolioSummary:
        return summarize_portfolio(self.ledgers(as_of), skipped_records=self.skipped_count)
