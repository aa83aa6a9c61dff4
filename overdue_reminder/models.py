"""Data models for the Overdue Reminder pipeline.

All models are plain dataclasses with type hints.  Rows and mappings are
frozen; ledgers are rebuilt from scratch on every aggregation pass, so
nothing here is shared between uploads.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Optional


# A raw CSV record: header -> cell value, exactly as the parser produced it.
RawRecord = dict[str, Any]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AgingBucket(Enum):
    """Portfolio aging ranges keyed on a customer's oldest overdue item.

    Each range includes its upper edge:
      0-30    days <= 30
      31-60   31..60 days
      61+     >= 61 days
    """

    CURRENT = "0-30"
    DAYS_31_60 = "31-60"
    DAYS_61_PLUS = "61+"

    @classmethod
    def from_days(cls, days_overdue: int | float) -> AgingBucket:
        """Assign a bucket based on days overdue."""
        if days_overdue <= 30:
            return cls.CURRENT
        if days_overdue <= 60:
            return cls.DAYS_31_60
        return cls.DAYS_61_PLUS


# ---------------------------------------------------------------------------
# Ingestion models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CsvChunk:
    """One delivery from a streaming source reader."""

    data: list[RawRecord] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FieldMap:
    """Canonical field -> source header.  Empty string means unmapped."""

    customer: str = ""
    email: str = ""
    invoice: str = ""
    amount: str = ""
    due_date: str = ""

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def get(self, field_name: str) -> str:
        return getattr(self, field_name)

    def with_overrides(self, **overrides: str) -> FieldMap:
        """Return a new map with the given entries replaced.

        Raises ValueError for names that are not canonical fields.
        """
        unknown = set(overrides) - set(self.field_names())
        if unknown:
            raise ValueError(
                f"Unknown field(s) {sorted(unknown)}; "
                f"expected one of {list(self.field_names())}"
            )
        cleaned = {k: (v or "").strip() for k, v in overrides.items()}
        return replace(self, **cleaned)

    @property
    def unmapped_fields(self) -> list[str]:
        return [name for name in self.field_names() if not self.get(name)]

    def to_dict(self) -> dict[str, str]:
        """Serialize with the camelCase keys used by the browser tool."""
        return {
            "customer": self.customer,
            "email": self.email,
            "invoice": self.invoice,
            "amount": self.amount,
            "dueDate": self.due_date,
        }


@dataclass(frozen=True)
class NormalizedRow:
    """One AR line item after column mapping and amount parsing."""

    customer: str
    email: Optional[str] = None
    invoice: str = ""
    amount: float = 0.0                     # signed: negative = credit
    due_date: str = ""

    @property
    def is_overdue(self) -> bool:
        return self.amount > 0

    @property
    def is_credit(self) -> bool:
        return self.amount < 0


# ---------------------------------------------------------------------------
# Aggregation models
# ---------------------------------------------------------------------------

@dataclass
class CustomerLedger:
    """All rows for a single customer plus derived totals.

    Totals are computed from ``rows`` on access.  ``math.fsum`` keeps them
    independent of row arrival order.
    """

    name: str
    rows: list[NormalizedRow] = field(default_factory=list)
    email: Optional[str] = None
    oldest_days_overdue: int = 0

    @property
    def overdue_rows(self) -> list[NormalizedRow]:
        return [r for r in self.rows if r.amount > 0]

    @property
    def credit_rows(self) -> list[NormalizedRow]:
        return [r for r in self.rows if r.amount < 0]

    @property
    def total_overdue(self) -> float:
        return math.fsum(r.amount for r in self.overdue_rows)

    @property
    def total_credits(self) -> float:
        return math.fsum(abs(r.amount) for r in self.credit_rows)

    @property
    def net_payable(self) -> float:
        return self.total_overdue - self.total_credits

    @property
    def is_remindable(self) -> bool:
        """True when the customer owes money after credits are applied."""
        return bool(self.overdue_rows) and self.net_payable > 0

    @property
    def aging_bucket(self) -> AgingBucket:
        return AgingBucket.from_days(self.oldest_days_overdue)

    @property
    def outstanding(self) -> float:
        """Net payable, floored at zero (used for aging amounts)."""
        return max(self.net_payable, 0.0)


@dataclass
class PortfolioSummary:
    """Portfolio-wide statistics for one aggregation pass."""

    customer_count: int = 0
    row_count: int = 0
    skipped_records: int = 0
    eligible_count: int = 0
    total_overdue: float = 0.0
    total_credits: float = 0.0
    net_payable: float = 0.0
    bucket_counts: dict[AgingBucket, int] = field(
        default_factory=lambda: {b: 0 for b in AgingBucket}
    )
    bucket_amounts: dict[AgingBucket, float] = field(
        default_factory=lambda: {b: 0.0 for b in AgingBucket}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "customer_count": self.customer_count,
            "row_count": self.row_count,
            "skipped_records": self.skipped_records,
            "eligible_count": self.eligible_count,
            "total_overdue": self.total_overdue,
            "total_credits": self.total_credits,
            "net_payable": self.net_payable,
            "aging": {
                b.value: {
                    "customers": self.bucket_counts[b],
                    "amount": self.bucket_amounts[b],
                }
                for b in AgingBucket
            },
        }


# ---------------------------------------------------------------------------
# Reminder models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TemplateDescriptor:
    """One entry of the template catalog."""

    id: str
    label: str
    subject_context: str


@dataclass(frozen=True)
class TemplatePolicy:
    """Everything the composer needs besides the ledger itself."""

    brand: str = "Paramount Liquor"
    subject_context: str = "Overdue Invoices"
    template_id: str = ""
    currency_symbol: str = "$"
    subject_template: str = ""              # free-form, {{Token}} placeholders
    body_template: str = ""


@dataclass(frozen=True)
class OverdueLine:
    invoice_ref: str
    amount: float
    due_date: str


@dataclass(frozen=True)
class CreditLine:
    reference: str
    amount: float                           # always a positive magnitude
    date: str


@dataclass(frozen=True)
class ReminderPayload:
    """A fully assembled reminder for one customer."""

    customer_name: str
    email: Optional[str]
    subject: str
    overdue_rows: tuple[OverdueLine, ...] = ()
    credit_rows: tuple[CreditLine, ...] = ()
    total_overdue: float = 0.0
    total_credits: float = 0.0
    net_payable: float = 0.0
    body_text: str = ""
    currency_symbol: str = "$"

    @property
    def invoice_refs(self) -> list[str]:
        return [r.invoice_ref for r in self.overdue_rows]

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON export / preview."""
        return {
            "customerName": self.customer_name,
            "email": self.email,
            "subject": self.subject,
            "overdueRows": [
                {"invoiceRef": r.invoice_ref, "amount": r.amount, "dueDate": r.due_date}
                for r in self.overdue_rows
            ],
            "creditRows": [
                {"reference": r.reference, "amount": r.amount, "date": r.date}
                for r in self.credit_rows
            ],
            "totalOverdue": self.total_overdue,
            "totalCredits": self.total_credits,
            "netPayable": self.net_payable,
            "bodyText": self.body_text,
        }


# ---------------------------------------------------------------------------
# Transmission models
# ---------------------------------------------------------------------------

@dataclass
class EmailRequest:
    """Provider-neutral send request assembled from a ReminderPayload."""

    to: str
    from_email: str
    subject: str
    reply_to: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    template_id: Optional[str] = None
    template_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class SendResult:
    """Outcome of one send attempt."""

    ok: bool
    customer_name: str = ""
    status_code: int | None = None
    error: str = ""


@dataclass
class BatchSendReport:
    """Tallies for one pass over the selected customers."""

    sent: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[SendResult] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [f"{r.customer_name}: {r.error}" for r in self.results if not r.ok]

    def summary(self) -> str:
        return f"Success: {self.sent}, Fail: {self.failed}, Skipped: {self.skipped}"
