"""Template catalog.

Lists the reminder templates an operator can choose from.  The live list
comes from SendGrid's dynamic templates; when that is unavailable (no API
key, network failure, bad response) the built-in list is used instead, so
composing reminders never depends on the provider being reachable.
"""

from __future__ import annotations

import logging
from typing import Sequence

import requests

from .config import DEFAULT_SENDGRID_TEMPLATE_ID, SendGridSettings
from .models import TemplateDescriptor, TemplatePolicy

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT_CONTEXT = "Overdue Invoices"

DEFAULT_TEMPLATES: tuple[TemplateDescriptor, ...] = (
    TemplateDescriptor(
        id=DEFAULT_SENDGRID_TEMPLATE_ID,
        label="Overdue invoices (SendGrid)",
        subject_context=DEFAULT_SUBJECT_CONTEXT,
    ),
    TemplateDescriptor(
        id="builtin-statement",
        label="Account statement (built-in)",
        subject_context="Account Statement",
    ),
    TemplateDescriptor(
        id="builtin-final-notice",
        label="Final notice (built-in)",
        subject_context="Final Notice - Overdue Invoices",
    ),
)


def fetch_templates(
    api_key: str,
    base_url: str = "https://api.sendgrid.com/v3",
    timeout: float = 15.0,
    session: requests.Session | None = None,
) -> list[TemplateDescriptor]:
    """Fetch dynamic templates from SendGrid.

    Each template's active version (or its first version) supplies the
    label.  Live templates share the standard subject context; the template
    name only appears in the label.  Raises ``requests.RequestException`` on
    HTTP/network failure and ``ValueError`` on a malformed body.
    """
    http = session or requests
    resp = http.get(
        f"{base_url.rstrip('/')}/templates",
        params={"generations": "dynamic"},
        headers={"Authorization": f"Bearer {api_key}"},
        timeout=timeout,
    )
    resp.raise_for_status()

    body = resp.json()
    if not isinstance(body, dict):
        raise ValueError("Unexpected template list response")

    descriptors: list[TemplateDescriptor] = []
    for tmpl in body.get("templates") or []:
        versions = tmpl.get("versions") or []
        active = next((v for v in versions if v.get("active") == 1), None)
        if active is None and versions:
            active = versions[0]
        name = tmpl.get("name") or tmpl.get("id") or ""
        label = f"{name} ({active['name']})" if active and active.get("name") else name
        descriptors.append(TemplateDescriptor(
            id=str(tmpl.get("id", "")),
            label=label,
            subject_context=DEFAULT_SUBJECT_CONTEXT,
        ))
    return descriptors


def load_catalog(
    settings: SendGridSettings,
    session: requests.Session | None = None,
) -> list[TemplateDescriptor]:
    """Return the live template list, or DEFAULT_TEMPLATES if it can't be fetched."""
    if not settings.api_key:
        logger.info("No SendGrid API key configured; using built-in templates")
        return list(DEFAULT_TEMPLATES)

    try:
        templates = fetch_templates(
            settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timeout,
            session=session,
        )
    except (requests.RequestException, ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Template catalog unavailable (%s); using built-in templates", exc)
        return list(DEFAULT_TEMPLATES)

    if not templates:
        logger.warning("SendGrid returned no dynamic templates; using built-in templates")
        return list(DEFAULT_TEMPLATES)

    logger.info("Loaded %d templates from SendGrid", len(templates))
    return templates


def resolve_policy(
    catalog: Sequence[TemplateDescriptor] | None,
    template_id: str = "",
    brand: str = "Paramount Liquor",
    currency_symbol: str = "$",
    subject_template: str = "",
    body_template: str = "",
    subject_context: str = "",
) -> TemplatePolicy:
    """Build a TemplatePolicy for *template_id*.

    Unknown ids, or an empty catalog, fall back to the first available
    descriptor.  A non-empty *subject_context* replaces the descriptor's.
    """
    entries = list(catalog) if catalog else list(DEFAULT_TEMPLATES)
    chosen = next((t for t in entries if t.id == template_id), None)
    if chosen is None:
        if template_id:
            logger.warning("Template %r not in catalog; using %r", template_id, entries[0].id)
        chosen = entries[0]

    return TemplatePolicy(
        brand=brand,
        subject_context=subject_context.strip() or chosen.subject_context,
        template_id=chosen.id,
        currency_symbol=currency_symbol,
        subject_template=subject_template,
        body_template=body_template,
    )
