"""Tests for overdue_reminder.aggregator -- grouping, totals and aging."""

import math
import random
from datetime import date, datetime

import pytest

from overdue_reminder.aggregator import (
    aggregate,
    days_overdue,
    parse_due_date,
    summarize_portfolio,
)
from overdue_reminder.models import AgingBucket, NormalizedRow

AS_OF = date(2024, 3, 31)


def _row(customer, amount, invoice="", email=None, due=""):
    return NormalizedRow(customer=customer, email=email, invoice=invoice,
                         amount=amount, due_date=due)


# ============================================================================
# Dates
# ============================================================================

class TestParseDueDate:

    @pytest.mark.parametrize("raw,expected", [
        ("2024-03-15", date(2024, 3, 15)),
        ("03/15/2024", date(2024, 3, 15)),
        ("2024-03-15T10:30:00", date(2024, 3, 15)),
        ("2024-03-15 10:30:00", date(2024, 3, 15)),
        ("Mar 15, 2024", date(2024, 3, 15)),
        ("15-Mar-2024", date(2024, 3, 15)),
        (date(2024, 3, 15), date(2024, 3, 15)),
        (datetime(2024, 3, 15, 9, 0), date(2024, 3, 15)),
    ])
    def test_formats(self, raw, expected):
        assert parse_due_date(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "soon", "31/31/2024"])
    def test_unreadable(self, raw):
        assert parse_due_date(raw) is None


class TestDaysOverdue:

    def test_whole_days(self):
        assert days_overdue("2024-03-01", AS_OF) == 30

    def test_future_due_is_zero(self):
        assert days_overdue("2024-04-15", AS_OF) == 0

    def test_unparseable_is_zero(self):
        assert days_overdue("not a date", AS_OF) == 0

    def test_datetime_as_of(self):
        assert days_overdue("2024-03-30", datetime(2024, 3, 31, 23, 59)) == 1


# ============================================================================
# Grouping
# ============================================================================

class TestAggregate:

    def test_groups_by_customer_in_first_seen_order(self):
        rows = [_row("Beta", 10), _row("Acme", 20), _row("Beta", 5)]
        ledgers = aggregate(rows, AS_OF)
        assert list(ledgers) == ["Beta", "Acme"]
        assert len(ledgers["Beta"].rows) == 2

    def test_rows_keep_arrival_order(self):
        rows = [_row("Acme", 1, "A"), _row("Acme", 2, "B"), _row("Acme", 3, "C")]
        ledger = aggregate(rows, AS_OF)["Acme"]
        assert [r.invoice for r in ledger.rows] == ["A", "B", "C"]

    def test_names_are_not_case_folded(self):
        ledgers = aggregate([_row("Acme", 1), _row("ACME", 1)], AS_OF)
        assert set(ledgers) == {"Acme", "ACME"}

    def test_blank_customer_excluded(self):
        ledgers = aggregate([_row("", 50), _row("   ", 50), _row("Acme", 10)], AS_OF)
        assert list(ledgers) == ["Acme"]

    def test_first_non_empty_email_wins(self):
        rows = [
            _row("Acme", 1),
            _row("Acme", 1, email="first@acme.test"),
            _row("Acme", 1, email="second@acme.test"),
        ]
        assert aggregate(rows, AS_OF)["Acme"].email == "first@acme.test"

    def test_totals(self):
        rows = [
            _row("Acme", 100, "INV-1"),
            _row("Acme", 25.5, "INV-2"),
            _row("Acme", -40, "CN-1"),
            _row("Acme", 0, "ZERO"),
        ]
        ledger = aggregate(rows, AS_OF)["Acme"]
        assert ledger.total_overdue == pytest.approx(125.5)
        assert ledger.total_credits == pytest.approx(40.0)
        assert ledger.net_payable == pytest.approx(85.5)
        # Zero-amount rows count as neither overdue nor credit
        assert len(ledger.overdue_rows) == 2
        assert len(ledger.credit_rows) == 1

    def test_oldest_days_overdue(self):
        rows = [
            _row("Acme", 10, due="2024-03-20"),
            _row("Acme", 10, due="2024-01-01"),
            _row("Acme", 10, due="garbage"),
        ]
        assert aggregate(rows, AS_OF)["Acme"].oldest_days_overdue == 90

    def test_idempotent(self):
        rows = [_row("Acme", 100), _row("Beta", -5), _row("Acme", -30)]
        first = aggregate(rows, AS_OF)
        second = aggregate(rows, AS_OF)
        assert first == second

    def test_sum_consistency(self):
        rng = random.Random(7)
        rows = [
            _row(f"C{rng.randint(1, 12)}", round(rng.uniform(-500, 1500), 2))
            for _ in range(300)
        ]
        ledgers = aggregate(rows, AS_OF).values()
        overdue = math.fsum(l.total_overdue for l in ledgers)
        credits = math.fsum(l.total_credits for l in ledgers)
        net = math.fsum(l.net_payable for l in ledgers)
        assert overdue - credits == pytest.approx(net, abs=1e-6)

    def test_totals_are_order_independent(self):
        rows = [_row("Acme", a) for a in (0.1, 0.2, 0.3, -0.6, 1e10, -1e10, 19.99)]
        forward = aggregate(rows, AS_OF)["Acme"]
        backward = aggregate(list(reversed(rows)), AS_OF)["Acme"]
        assert forward.total_overdue == backward.total_overdue
        assert forward.total_credits == backward.total_credits
        assert forward.net_payable == backward.net_payable


# ============================================================================
# Aging
# ============================================================================

class TestAging:

    @pytest.mark.parametrize("days,expected", [
        (0, AgingBucket.CURRENT),
        (30, AgingBucket.CURRENT),
        (31, AgingBucket.DAYS_31_60),
        (60, AgingBucket.DAYS_31_60),
        (61, AgingBucket.DAYS_61_PLUS),
        (400, AgingBucket.DAYS_61_PLUS),
    ])
    def test_bucket_edges(self, days, expected):
        assert AgingBucket.from_days(days) == expected

    def test_exactly_30_days_is_current(self):
        ledger = aggregate([_row("Acme", 10, due="2024-03-01")], AS_OF)["Acme"]
        assert ledger.oldest_days_overdue == 30
        assert ledger.aging_bucket == AgingBucket.CURRENT

    def test_31_days_is_next_bucket(self):
        ledger = aggregate([_row("Acme", 10, due="2024-02-29")], AS_OF)["Acme"]
        assert ledger.oldest_days_overdue == 31
        assert ledger.aging_bucket == AgingBucket.DAYS_31_60


class TestSummarizePortfolio:

    def test_summary(self):
        rows = [
            _row("Acme", 100, due="2024-03-20"),        # 11 days
            _row("Acme", -40, due="2024-03-25"),
            _row("Beta", 200, due="2024-02-15"),        # 45 days
            _row("Gamma", -75, due="2023-12-01"),       # credit only, 121 days
            _row("Delta", 50, due="2023-11-01"),        # 151 days
            _row("Delta", -50, due="2023-11-02"),       # net zero
        ]
        ledgers = aggregate(rows, AS_OF)
        summary = summarize_portfolio(ledgers, skipped_records=3)

        assert summary.customer_count == 4
        assert summary.row_count == 6
        assert summary.skipped_records == 3
        assert summary.eligible_count == 2                 # Acme, Beta
        assert summary.total_overdue == pytest.approx(350.0)
        assert summary.total_credits == pytest.approx(165.0)
        assert summary.net_payable == pytest.approx(185.0)

        assert summary.bucket_counts[AgingBucket.CURRENT] == 1
        assert summary.bucket_counts[AgingBucket.DAYS_31_60] == 1
        assert summary.bucket_counts[AgingBucket.DAYS_61_PLUS] == 2
        assert summary.bucket_amounts[AgingBucket.CURRENT] == pytest.approx(60.0)
        assert summary.bucket_amounts[AgingBucket.DAYS_31_60] == pytest.approx(200.0)
        # Credit-only and net-zero customers add nothing to aged amounts
        assert summary.bucket_amounts[AgingBucket.DAYS_61_PLUS] == 0.0

    def test_empty(self):
        summary = summarize_portfolio({})
        assert summary.customer_count == 0
        assert summary.net_payable == 0.0
        assert all(v == 0 for v in summary.bucket_counts.values())

    def test_to_dict(self):
        ledgers = aggregate([_row("Acme", 10, due="2024-03-01")], AS_OF)
        d = summarize_portfolio(ledgers).to_dict()
        assert d["aging"]["0-30"] == {"customers": 1, "amount": 10.0}
        assert d["aging"]["61+"]["customers"] == 0
