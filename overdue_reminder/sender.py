"""SendGrid delivery.

Builds provider-neutral :class:`EmailRequest` objects from reminder
payloads and posts them to the SendGrid v3 ``mail/send`` endpoint, one
request per customer with a short pause between calls.

Send failures (HTTP errors, network errors, missing addresses) are
reported as ``SendResult(ok=False, ...)`` so a batch always runs to the
end; only a missing API key is raised, since nothing can be sent without
one.
"""

from __future__ import annotations

import base64
import logging
import time
from datetime import date
from typing import Any, Callable, Iterable

import requests

from .config import BrandInfo
from .models import BatchSendReport, EmailRequest, ReminderPayload, SendResult
from .template_engine import TemplateEngine, clean_header

logger = logging.getLogger(__name__)

SENDGRID_DYNAMIC_PREFIX = "d-"


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------

def build_email_request(
    payload: ReminderPayload,
    from_email: str,
    reply_to: str | None = None,
    template_id: str | None = None,
    engine: TemplateEngine | None = None,
    brand: BrandInfo | None = None,
    year: int | None = None,
) -> EmailRequest:
    """Assemble the send request for one payload.

    A SendGrid dynamic template id (``d-...``) sends template data; any
    other id (or none) sends the rendered text and HTML bodies directly.
    """
    engine = engine or TemplateEngine(brand=brand)
    year = year if year is not None else date.today().year
    request = EmailRequest(
        to=clean_header(payload.email),
        from_email=clean_header(from_email),
        reply_to=clean_header(reply_to) or None,
        subject=clean_header(payload.subject),
    )

    if template_id and template_id.startswith(SENDGRID_DYNAMIC_PREFIX):
        request.template_id = template_id
        request.template_data = engine.build_template_data(
            payload, reply_to=request.reply_to, year=year,
        )
    else:
        request.body_text = payload.body_text
        request.body_html = engine.render_html(payload, reply_to=request.reply_to, year=year)

    return request


def to_sendgrid_json(
    request: EmailRequest,
    attachments: list[dict[str, str]] | None = None,
) -> dict[str, Any]:
    """Translate an EmailRequest into the SendGrid v3 mail/send body."""
    personalization: dict[str, Any] = {"to": [{"email": request.to}]}
    body: dict[str, Any] = {
        "from": {"email": request.from_email},
        "personalizations": [personalization],
    }
    if request.reply_to:
        body["reply_to"] = {"email": request.reply_to}
    if attachments:
        body["attachments"] = attachments

    if request.template_id:
        body["template_id"] = request.template_id
        personalization["dynamic_template_data"] = {
            **request.template_data,
            "subject": request.subject,
        }
        personalization["subject"] = request.subject
    else:
        body["subject"] = request.subject
        content = []
        if request.body_text:
            content.append({"type": "text/plain", "value": request.body_text})
        if request.body_html:
            content.append({"type": "text/html", "value": request.body_html})
        body["content"] = content

    return body


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class SendGridClient:
    """Minimal SendGrid mail/send client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.sendgrid.com/v3",
        timeout: float = 15.0,
        logo_url: str = "",
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("SENDGRID_API_KEY not set")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.logo_url = logo_url
        self.session = session or requests.Session()
        self._logo: dict[str, str] | None = None
        self._logo_fetched = False

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def inline_logo(self) -> dict[str, str] | None:
        """Fetch the logo once and return it as an inline (cid:logo) attachment."""
        if self._logo_fetched or not self.logo_url:
            return self._logo
        self._logo_fetched = True
        try:
            resp = self.session.get(self.logo_url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to fetch logo from %s: %s", self.logo_url, exc)
            return None

        self._logo = {
            "content": base64.b64encode(resp.content).decode("ascii"),
            "filename": "logo.png",
            "type": resp.headers.get("content-type") or "image/png",
            "disposition": "inline",
            "content_id": "logo",
        }
        return self._logo

    def send(self, request: EmailRequest, customer_name: str = "") -> SendResult:
        """Send one request.  Never raises for provider or network errors."""
        if not request.to or not request.from_email:
            return SendResult(ok=False, customer_name=customer_name,
                              error="Missing 'to' or 'from'.")

        logo = self.inline_logo()
        body = to_sendgrid_json(request, attachments=[logo] if logo else None)

        try:
            resp = self.session.post(
                f"{self.base_url}/mail/send",
                headers=self._headers(),
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("SendGrid request failed for %s: %s", customer_name, exc)
            return SendResult(ok=False, customer_name=customer_name, error=str(exc))

        if not resp.ok:
            logger.error(
                "SendGrid rejected %s: %s %s", customer_name, resp.status_code, resp.text,
            )
            return SendResult(ok=False, customer_name=customer_name,
                              status_code=resp.status_code, error=resp.text)

        logger.info("Sent reminder to %s <%s>", customer_name, request.to)
        return SendResult(ok=True, customer_name=customer_name, status_code=resp.status_code)


# ---------------------------------------------------------------------------
# Batch sending
# ---------------------------------------------------------------------------

def send_reminders(
    payloads: Iterable[ReminderPayload | None],
    client: SendGridClient,
    from_email: str,
    reply_to: str | None = None,
    template_id: str | None = None,
    engine: TemplateEngine | None = None,
    pacing_seconds: float = 0.15,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchSendReport:
    """Send one reminder per payload, pausing between calls.

    ``None`` entries (ineligible customers) and payloads without an email
    address are counted as skipped.
    """
    engine = engine or TemplateEngine()
    report = BatchSendReport()
    first = True

    for payload in payloads:
        if payload is None:
            report.skipped += 1
            continue
        if not payload.email:
            logger.warning("No email address for %s -- skipping", payload.customer_name)
            report.skipped += 1
            continue

        if not first and pacing_seconds > 0:
            sleep(pacing_seconds)
        first = False

        request = build_email_request(
            payload, from_email, reply_to=reply_to, template_id=template_id, engine=engine,
        )
        result = client.send(request, customer_name=payload.customer_name)
        report.results.append(result)
        if result.ok:
            report.sent += 1
        else:
            report.failed += 1

    logger.info("Send pass complete. %s", report.summary())
    return report
