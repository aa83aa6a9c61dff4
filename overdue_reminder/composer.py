"""Reminder composition.

Turns one :class:`CustomerLedger` into a :class:`ReminderPayload`: subject
line, overdue/credit line items, totals and the plain-text body.

Eligibility is the single business rule deciding who gets a reminder: the
customer must have at least one overdue row and a positive net payable.
Ineligible customers yield ``None``, which is an expected outcome rather
than an error.

Usage::

    from overdue_reminder.composer import ReminderComposer

    composer = ReminderComposer(TemplatePolicy(brand="Paramount Liquor"))
    payload = composer.compose(ledger, "Acme")
    if payload is not None:
        print(payload.subject)
"""

from __future__ import annotations

import logging
from typing import Mapping

from .config import BrandInfo
from .models import (
    CreditLine,
    CustomerLedger,
    OverdueLine,
    ReminderPayload,
    TemplatePolicy,
)
from .template_engine import (
    TemplateEngine,
    clean_header,
    format_money,
    substitute_placeholders,
)

logger = logging.getLogger(__name__)

FALLBACK_SUBJECT = "Overdue Invoice Reminder"

__all__ = [
    "FALLBACK_SUBJECT",
    "ReminderComposer",
    "build_subject",
    "compose",
    "compose_all",
    "format_money",
    "is_eligible",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_eligible(ledger: CustomerLedger) -> bool:
    """True when the ledger has overdue rows and a positive net payable."""
    return ledger.is_remindable


def build_subject(brand: str, context: str, customer_name: str) -> str:
    """Build '<Brand> <Context> - <CustomerName>'.

    Empty parts are dropped; if everything is empty the generic
    FALLBACK_SUBJECT is used.  The result never contains newlines.
    """
    head = " ".join(p for p in (clean_header(brand), clean_header(context)) if p)
    name = clean_header(customer_name)
    if head and name:
        return f"{head} - {name}"
    return head or name or FALLBACK_SUBJECT


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------

class ReminderComposer:
    """Builds reminder payloads for one template policy."""

    def __init__(
        self,
        policy: TemplatePolicy | None = None,
        engine: TemplateEngine | None = None,
    ) -> None:
        self.policy = policy or TemplatePolicy()
        self.engine = engine or TemplateEngine(brand=BrandInfo(
            name=self.policy.brand,
            currency_symbol=self.policy.currency_symbol,
        ))

    def compose(
        self,
        ledger: CustomerLedger,
        customer_name: str | None = None,
    ) -> ReminderPayload | None:
        """Compose a payload, or return None for an ineligible customer."""
        name = customer_name if customer_name is not None else ledger.name
        if not is_eligible(ledger):
            logger.debug(
                "Skipping %s: %d overdue rows, net payable %.2f",
                name, len(ledger.overdue_rows), ledger.net_payable,
            )
            return None

        overdue = tuple(
            OverdueLine(invoice_ref=r.invoice, amount=r.amount, due_date=r.due_date)
            for r in ledger.overdue_rows
        )
        credits = tuple(
            CreditLine(reference=r.invoice, amount=abs(r.amount), date=r.due_date)
            for r in ledger.credit_rows
        )
        total_overdue = ledger.total_overdue
        total_credits = ledger.total_credits
        net_payable = ledger.net_payable

        values = self._placeholder_values(
            name, ledger.email, total_overdue, total_credits, net_payable,
            len(overdue), len(credits),
        )
        subject = self._subject(name, values)

        if self.policy.body_template:
            body_text = substitute_placeholders(self.policy.body_template, values)
        else:
            body_text = self.engine.render_text({
                "customer_name": name,
                "overdue_rows": overdue,
                "credit_rows": credits,
                "total_overdue": total_overdue,
                "total_credits": total_credits,
                "net_payable": net_payable,
                "symbol": self.policy.currency_symbol,
            })

        return ReminderPayload(
            customer_name=name,
            email=clean_header(ledger.email) or None,
            subject=subject,
            overdue_rows=overdue,
            credit_rows=credits,
            total_overdue=total_overdue,
            total_credits=total_credits,
            net_payable=net_payable,
            body_text=body_text,
            currency_symbol=self.policy.currency_symbol,
        )

    def compose_all(self, ledgers: Mapping[str, CustomerLedger]) -> list[ReminderPayload]:
        """Payloads for every eligible ledger, in ledger order."""
        payloads: list[ReminderPayload] = []
        for name, ledger in ledgers.items():
            payload = self.compose(ledger, name)
            if payload is not None:
                payloads.append(payload)
        logger.info("Composed %d reminders from %d customers", len(payloads), len(ledgers))
        return payloads

    # -------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------

    def _subject(self, name: str, values: Mapping[str, object]) -> str:
        if self.policy.subject_template:
            custom = clean_header(substitute_placeholders(self.policy.subject_template, values))
            if custom:
                return custom
        return build_subject(self.policy.brand, self.policy.subject_context, name)

    def _placeholder_values(
        self,
        name: str,
        email: str | None,
        total_overdue: float,
        total_credits: float,
        net_payable: float,
        invoice_count: int,
        credit_count: int,
    ) -> dict[str, object]:
        symbol = self.policy.currency_symbol
        return {
            "CustomerName": name,
            "Brand": self.policy.brand,
            "Email": email or "",
            "TotalOverdue": format_money(total_overdue, symbol),
            "TotalCredits": format_money(total_credits, symbol),
            "NetPayable": format_money(net_payable, symbol),
            "InvoiceCount": invoice_count,
            "CreditCount": credit_count,
        }


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def compose(
    ledger: CustomerLedger,
    customer_name: str | None = None,
    policy: TemplatePolicy | None = None,
) -> ReminderPayload | None:
    """Create a ReminderComposer and compose one payload."""
    return ReminderComposer(policy).compose(ledger, customer_name)


def compose_all(
    ledgers: Mapping[str, CustomerLedger],
    policy: TemplatePolicy | None = None,
) -> list[ReminderPayload]:
    return ReminderComposer(policy).compose_all(ledgers)
