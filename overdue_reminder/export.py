"""Mail-file export.

Writes reminder payloads as ``.eml`` messages (plain text + HTML
alternative) and bundles them into a zip archive that can be opened in
any desktop mail client for manual review and sending.
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import format_datetime
from pathlib import Path
from typing import Iterable

from .models import ReminderPayload
from .template_engine import TemplateEngine, clean_header

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str, suffix: str = ".eml") -> str:
    """File-system safe name derived from a customer name."""
    stem = _UNSAFE_FILENAME.sub("_", name.strip()).strip("._") or "customer"
    return f"{stem[:80]}{suffix}"


def build_eml(
    payload: ReminderPayload,
    from_email: str = "",
    reply_to: str | None = None,
    html_body: str | None = None,
    sent_at: datetime | None = None,
) -> str:
    """Generate .eml content for one payload.

    All header values pass through :func:`clean_header`, so a stray newline
    in a customer name or address cannot break the header block.
    """
    msg = MIMEMultipart("alternative")
    msg["From"] = clean_header(from_email)
    msg["To"] = clean_header(payload.email)
    if reply_to:
        msg["Reply-To"] = clean_header(reply_to)
    msg["Subject"] = clean_header(payload.subject)
    when = sent_at or datetime.now()
    if when.tzinfo is None:
        when = when.astimezone()
    msg["Date"] = format_datetime(when)

    msg.attach(MIMEText(payload.body_text, "plain", "utf-8"))
    if html_body:
        msg.attach(MIMEText(html_body, "html", "utf-8"))

    return msg.as_string()


def build_zip(
    payloads: Iterable[ReminderPayload],
    from_email: str = "",
    reply_to: str | None = None,
    engine: TemplateEngine | None = None,
    sent_at: datetime | None = None,
) -> bytes:
    """Zip one .eml per payload.  Duplicate filenames get a numeric suffix."""
    engine = engine or TemplateEngine()
    buffer = io.BytesIO()
    used: set[str] = set()

    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for payload in payloads:
            html_body = engine.render_html(payload, reply_to=reply_to)
            eml = build_eml(payload, from_email, reply_to, html_body, sent_at)

            filename = safe_filename(payload.customer_name)
            counter = 2
            while filename in used:
                filename = safe_filename(f"{payload.customer_name}_{counter}")
                counter += 1
            used.add(filename)
            zf.writestr(filename, eml)

    return buffer.getvalue()


def write_zip(
    payloads: Iterable[ReminderPayload],
    path: str | Path,
    from_email: str = "",
    reply_to: str | None = None,
    engine: TemplateEngine | None = None,
) -> Path:
    """Write the .eml archive to *path* and return it."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = build_zip(payloads, from_email, reply_to, engine)
    path.write_bytes(data)
    logger.info("Wrote mail archive: %s (%d bytes)", path, len(data))
    return path
