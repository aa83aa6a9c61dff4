"""Overdue Reminder - AR export to per-customer overdue reminders.

Ingests an accounts-receivable CSV/XLSX export, maps its columns, parses
messy currency values, groups line items by customer and composes one
reminder per customer that still owes money after credits.  Reminders
can be previewed, exported as .eml files, or sent through SendGrid.
"""

from .models import (
    AgingBucket,
    BatchSendReport,
    CreditLine,
    CsvChunk,
    CustomerLedger,
    EmailRequest,
    FieldMap,
    NormalizedRow,
    OverdueLine,
    PortfolioSummary,
    ReminderPayload,
    SendResult,
    TemplateDescriptor,
    TemplatePolicy,
)

from .aggregator import aggregate, summarize_portfolio
from .column_mapper import auto_map
from .composer import ReminderComposer, compose, compose_all
from .ingest import CsvIngestor, UploadSession, ingest
from .normalizer import normalize_amount

__all__ = [
    "AgingBucket",
    "BatchSendReport",
    "CreditLine",
    "CsvChunk",
    "CsvIngestor",
    "CustomerLedger",
    "EmailRequest",
    "FieldMap",
    "NormalizedRow",
    "OverdueLine",
    "PortfolioSummary",
    "ReminderComposer",
    "ReminderPayload",
    "SendResult",
    "TemplateDescriptor",
    "TemplatePolicy",
    "UploadSession",
    "aggregate",
    "auto_map",
    "compose",
    "compose_all",
    "ingest",
    "normalize_amount",
    "summarize_portfolio",
]
