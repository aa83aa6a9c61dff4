"""Per-customer aggregation and portfolio aging.

Groups normalized rows into :class:`CustomerLedger` objects and derives
the portfolio aging summary.  Every call rebuilds its output from the
rows it is given; nothing is cached between calls.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Iterable, Mapping

from .models import AgingBucket, CustomerLedger, NormalizedRow, PortfolioSummary

logger = logging.getLogger(__name__)

# Accepted due-date string formats, tried in order.
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d-%b-%Y",
    "%d %b %Y",
)


# ---------------------------------------------------------------------------
# Dates & aging
# ---------------------------------------------------------------------------

def parse_due_date(val) -> date | None:
    """Parse a due-date cell value; None when it cannot be read."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val

    s = str(val).strip()
    if not s:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def days_overdue(due, as_of: date | None = None) -> int:
    """Whole days between the due date and *as_of* (default: today).

    Unparseable or future due dates count as 0.
    """
    due_date = parse_due_date(due)
    if due_date is None:
        return 0
    today = as_of or date.today()
    if isinstance(today, datetime):
        today = today.date()
    return max((today - due_date).days, 0)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def aggregate(
    rows: Iterable[NormalizedRow],
    as_of: date | None = None,
) -> dict[str, CustomerLedger]:
    """Group rows into ledgers keyed by exact (trimmed) customer name.

    Ledgers appear in order of each customer's first row.  Names are not
    case-folded, so "Acme" and "ACME" are two customers.
    """
    today = as_of or date.today()
    ledgers: dict[str, CustomerLedger] = {}

    for row in rows:
        name = row.customer.strip()
        if not name:
            continue
        ledger = ledgers.get(name)
        if ledger is None:
            ledger = CustomerLedger(name=name)
            ledgers[name] = ledger
        ledger.rows.append(row)
        if not ledger.email and row.email:
            ledger.email = row.email
        ledger.oldest_days_overdue = max(
            ledger.oldest_days_overdue, days_overdue(row.due_date, today)
        )

    logger.debug("Aggregated %d customer ledgers", len(ledgers))
    return ledgers


def summarize_portfolio(
    ledgers: Mapping[str, CustomerLedger],
    skipped_records: int = 0,
) -> PortfolioSummary:
    """Portfolio totals plus the aging bucket breakdown.

    Each customer lands in the bucket of its oldest item; the bucket amount
    is the sum of the customers' outstanding (non-negative) balances.
    """
    summary = PortfolioSummary(skipped_records=skipped_records)
    bucket_members: dict[AgingBucket, list[float]] = {b: [] for b in AgingBucket}

    for ledger in ledgers.values():
        summary.customer_count += 1
        summary.row_count += len(ledger.rows)
        if ledger.is_remindable:
            summary.eligible_count += 1
        bucket = ledger.aging_bucket
        summary.bucket_counts[bucket] += 1
        bucket_members[bucket].append(ledger.outstanding)

    summary.total_overdue = math.fsum(l.total_overdue for l in ledgers.values())
    summary.total_credits = math.fsum(l.total_credits for l in ledgers.values())
    summary.net_payable = math.fsum(l.net_payable for l in ledgers.values())
    for bucket, amounts in bucket_members.items():
        summary.bucket_amounts[bucket] = math.fsum(amounts)

    return summary
