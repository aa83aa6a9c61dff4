"""Monetary value parsing for messy spreadsheet exports.

Accounting exports mix several conventions for the same number::

    "1,234.56"     "$1,234.56"     "(123.45)"     "-123.45"
    "50 CR"        "1.234,56"      "1234,56"      ""

:func:`normalize_amount` turns all of them into a signed float.  It never
raises; anything it cannot read becomes ``0.0``.

Known limitation: a value grouped with commas and no decimal point, such as
``"1,234,567"``, reads every comma as a decimal comma and so becomes ``0.0``.
Exports that group thousands this way need a period decimal (``"1,234,567.00"``).
"""

from __future__ import annotations

import math
import re

_CREDIT_MARKER = re.compile(r"\bCR\b")
_NON_NUMERIC = re.compile(r"[^0-9.,]")


def normalize_amount(raw) -> float:
    """Parse a free-form monetary cell value into a signed amount.

    Handles:
    - ``None`` / empty strings -> ``0.0``.
    - Numbers (already parsed by the reader) -> returned as float.
    - Parenthesized negatives: ``"(500.00)"``.
    - Leading minus: ``"-500.00"``.
    - Credit-note suffix/prefix: ``"500.00 CR"``.
    - Currency symbols, spaces and other noise are dropped.

    Negative markers do not stack: ``"(50 CR)"`` is ``-50``.
    """
    if raw is None:
        return 0.0

    # bool is an int subclass but never an amount
    if isinstance(raw, bool):
        return 0.0

    if isinstance(raw, (int, float)):
        value = float(raw)
        return 0.0 if math.isnan(value) or math.isinf(value) else value

    s = str(raw).strip().upper()
    if not s:
        return 0.0

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1].strip()
    if s.startswith("-"):
        negative = True
        s = s[1:].strip()
    if _CREDIT_MARKER.search(s):
        negative = True

    s = _NON_NUMERIC.sub("", s)
    s = _resolve_separators(s)

    try:
        value = float(s) if s else 0.0
    except ValueError:
        return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0

    return -value if negative else value


def _resolve_separators(s: str) -> str:
    """Rewrite a digits/comma/period string into a float()-friendly form.

    With both separators present the one appearing last is the decimal
    separator.  A lone comma is a decimal comma, so several commas and no
    period leave an unparseable string.
    """
    has_comma = "," in s
    has_period = "." in s

    if has_comma and has_period:
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if has_comma:
        return s.replace(",", ".")
    return s
