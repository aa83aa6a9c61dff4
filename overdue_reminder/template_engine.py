"""
Overdue Reminder -- Template Engine

Renders Jinja2 templates for reminder bodies and assembles the dynamic
template data the SendGrid template expects.

Responsibilities:
  1. Load text/HTML templates from the package templates/ directory
  2. Format money ($X,XXX.XX, negatives as "- $X.XX") consistently
  3. Render the plain-text body used in previews and .eml exports
  4. Render the HTML body (invoice table, optional credit table)
  5. Build SendGrid dynamic_template_data from a ReminderPayload
  6. Substitute {{Token}} placeholders in operator-supplied free-form templates

Usage:
    from overdue_reminder.template_engine import TemplateEngine

    engine = TemplateEngine()
    html = engine.render_html(payload, reply_to="ar@example.com")
"""

from __future__ import annotations

import re
from datetime import date
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, pass_context, select_autoescape

from .config import TEMPLATE_DIR, BrandInfo
from .models import ReminderPayload


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Placeholders recognised in free-form templates.  Anything else is kept.
KNOWN_PLACEHOLDERS = (
    "CustomerName",
    "Brand",
    "Email",
    "TotalOverdue",
    "TotalCredits",
    "NetPayable",
    "InvoiceCount",
    "CreditCount",
)

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]+")


# ---------------------------------------------------------------------------
# Helper: Format Utilities
# ---------------------------------------------------------------------------

def format_money(amount: float | None, symbol: str = "$") -> str:
    """Format an amount as currency: '$1,510.00', negatives '- $1,510.00'.

    Always 2 decimal places with a comma thousands separator.
    Returns '$0.00' for None.
    """
    if amount is None:
        amount = 0.0
    magnitude = f"{symbol}{abs(amount):,.2f}"
    return f"- {magnitude}" if amount < 0 else magnitude


def clean_header(value: str | None) -> str:
    """Collapse newlines / control characters so a value is safe in a mail header."""
    if not value:
        return ""
    return " ".join(_CONTROL_CHARS.sub(" ", str(value)).split())


def reply_href(reply_to: str | None, subject: str) -> str:
    """mailto: link for the reply button, '#' when there is no reply address."""
    if not reply_to:
        return "#"
    return f"mailto:{quote(reply_to, safe='@')}?subject={quote(subject, safe='')}"


def substitute_placeholders(text: str, values: Mapping[str, Any]) -> str:
    """Replace ``{{Token}}`` placeholders from *values*.

    Only names in KNOWN_PLACEHOLDERS are substituted.  Unknown tokens, and
    known tokens missing from *values*, are left exactly as written.
    """
    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name in KNOWN_PLACEHOLDERS and name in values:
            return str(values[name])
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, text or "")


# ===========================================================================
# Main Template Engine Class
# ===========================================================================

class TemplateEngine:
    """Jinja2 renderer for reminder bodies.

    Attributes:
        env: The Jinja2 Environment configured with the template directory.
        template_dir: Path to the templates/ directory.
        brand: Branding used for colors, names and the currency symbol.
    """

    def __init__(
        self,
        template_dir: str | Path | None = None,
        brand: BrandInfo | None = None,
    ) -> None:
        self.template_dir = Path(template_dir) if template_dir else TEMPLATE_DIR
        self.brand = brand or BrandInfo()

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.env.filters["money"] = self._money_filter

    @pass_context
    def _money_filter(self, ctx, value) -> str:
        # A "symbol" in the render context overrides the brand default
        symbol = ctx.get("symbol")
        if symbol is None:
            symbol = self.brand.currency_symbol
        return format_money(value, symbol)

    # -------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------

    def render_text(self, context: Mapping[str, Any]) -> str:
        """Render the plain-text reminder body."""
        return self.env.get_template("reminder.txt").render(brand=self.brand, **context)

    def render_invoice_rows(self, payload: ReminderPayload) -> str:
        return self.env.get_template("invoice_rows.html").render(
            brand=self.brand, rows=payload.overdue_rows, symbol=payload.currency_symbol,
        )

    def render_credit_section(self, payload: ReminderPayload) -> str:
        """HTML credit table, or an empty string when there are no credits."""
        if not payload.credit_rows:
            return ""
        return self.env.get_template("credit_section.html").render(
            brand=self.brand, rows=payload.credit_rows, symbol=payload.currency_symbol,
        )

    def render_html(
        self,
        payload: ReminderPayload,
        reply_to: str | None = None,
        year: int | None = None,
    ) -> str:
        """Render the full HTML body (used for .eml export and plain sends)."""
        data = self.build_template_data(payload, reply_to=reply_to, year=year)
        return self.env.get_template("reminder.html").render(
            brand=self.brand, payload=payload, data=data,
        )

    # -------------------------------------------------------------------
    # Provider data
    # -------------------------------------------------------------------

    def build_template_data(
        self,
        payload: ReminderPayload,
        reply_to: str | None = None,
        year: int | None = None,
    ) -> dict[str, Any]:
        """Dynamic template data for the SendGrid reminder template."""
        symbol = payload.currency_symbol
        return {
            "customerName": payload.customer_name,
            "invoiceRows": self.render_invoice_rows(payload),
            "totalOverdue": format_money(payload.total_overdue, symbol),
            "totalCredits": format_money(payload.total_credits, symbol),
            "netPayable": format_money(payload.net_payable, symbol),
            "creditSection": self.render_credit_section(payload),
            "replyHref": reply_href(reply_to, payload.subject),
            "year": year if year is not None else date.today().year,
        }
