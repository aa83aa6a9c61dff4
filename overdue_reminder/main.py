"""Overdue Reminder -- Main Pipeline Orchestrator.

Runs the reminder pipeline end to end:

    1. Load configuration (config.yaml or defaults)
    2. Stream the AR export (CSV or XLSX) into an upload session
    3. Auto-map columns, then apply any --map overrides
    4. Aggregate rows into customer ledgers and the aging summary
    5. Resolve the template policy from the catalog
    6. Compose one reminder per eligible (selected) customer
    7. Optionally preview, export an .eml zip, and/or send via SendGrid
    8. Print a summary

Usage::

    python -m overdue_reminder.main data/ar_export.csv
    python -m overdue_reminder.main data/ar_export.csv --map amount="Balance Due"
    python -m overdue_reminder.main data/ar.xlsx --export-zip output/reminders.zip
    python -m overdue_reminder.main data/ar.csv --export-zip        # into output.export_dir
    python -m overdue_reminder.main data/ar.csv --send --from ar@example.com --dry-run
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Sequence

from .catalog import load_catalog, resolve_policy
from .composer import ReminderComposer
from .config import OutputConfig, ReminderConfig, get_config
from .data_loader import load_upload
from .export import write_zip
from .ingest import UploadSession
from .models import (
    AgingBucket,
    BatchSendReport,
    CustomerLedger,
    FieldMap,
    PortfolioSummary,
    ReminderPayload,
)
from .sender import SendGridClient, send_reminders
from .template_engine import TemplateEngine, format_money

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

# Mapping keys accepted by --map in addition to the canonical field names.
_MAP_KEY_ALIASES = {"dueDate": "due_date", "duedate": "due_date"}


# ---------------------------------------------------------------------------
# Pipeline Result
# ---------------------------------------------------------------------------

@dataclass
class PipelineResult:
    """Container for the full pipeline run output."""

    session: UploadSession | None = None
    ledgers: dict[str, CustomerLedger] = field(default_factory=dict)
    summary: PortfolioSummary = field(default_factory=PortfolioSummary)
    payloads: list[ReminderPayload] = field(default_factory=list)

    # Customers selected for reminders (all of them when no --customer given)
    selected_customers: list[str] = field(default_factory=list)

    export_path: Path | None = None
    send_report: BatchSendReport | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def reminders_composed(self) -> int:
        return len(self.payloads)

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def parse_map_overrides(pairs: Sequence[str] | None) -> dict[str, str]:
    """Parse ``field=Header`` strings into FieldMap overrides.

    An empty header (``email=``) unmaps the field.

    Raises:
        ValueError: On a malformed pair or an unknown field name.
    """
    overrides: dict[str, str] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ValueError(f"Invalid --map value {pair!r}; expected field=Header")
        key, header = pair.split("=", 1)
        key = key.strip()
        key = _MAP_KEY_ALIASES.get(key, key)
        if key not in FieldMap.field_names():
            raise ValueError(
                f"Unknown field {key!r} in --map; expected one of {list(FieldMap.field_names())}"
            )
        overrides[key] = header.strip()
    return overrides


def _parse_as_of(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"Invalid --as-of date {value!r}; expected YYYY-MM-DD") from exc


def _select_ledgers(
    ledgers: dict[str, CustomerLedger],
    customers: Sequence[str] | None,
) -> dict[str, CustomerLedger]:
    """Restrict ledgers to the named customers, keeping ledger order."""
    if not customers:
        return dict(ledgers)
    wanted = {c.strip() for c in customers}
    missing = wanted - set(ledgers)
    for name in sorted(missing):
        logger.warning("Customer %r not found in upload", name)
    return {name: ledger for name, ledger in ledgers.items() if name in wanted}


def _print_preview(payload: ReminderPayload) -> None:
    print()
    print("=" * 65)
    print(f"  Preview -- {payload.customer_name}")
    print("=" * 65)
    print(f"  To      : {payload.email or '(no email address)'}")
    print(f"  Subject : {payload.subject}")
    print("-" * 65)
    print(payload.body_text.rstrip())
    print("=" * 65)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def run_pipeline(
    source: str | Path,
    *,
    config_path: str | Path | None = None,
    config: ReminderConfig | None = None,
    map_overrides: dict[str, str] | None = None,
    as_of: date | None = None,
    template_id: str | None = None,
    customers: Sequence[str] | None = None,
    preview: str | None = None,
    export_zip: str | Path | bool | None = None,
    send: bool = False,
    from_email: str | None = None,
    reply_to: str | None = None,
    dry_run: bool = False,
    client: SendGridClient | None = None,
) -> PipelineResult:
    """Execute the reminder pipeline for one source file.

    Args:
        source: Path to the CSV or XLSX export.
        config_path: Path to config.yaml.  Ignored when *config* is given.
        config: Pre-built configuration (mainly for tests).
        map_overrides: Canonical field -> header replacements for the auto-map.
        as_of: Reference date for aging.  Defaults to today.
        template_id: Catalog template to use.  Defaults to config.
        customers: Restrict reminders to these customer names.
        preview: Print the composed reminder for this customer.
        export_zip: Write an .eml zip archive here.  True picks a
            timestamped file in the configured export directory.
        send: Send the reminders through SendGrid.
        from_email: Verified sender address (overrides config).
        reply_to: Reply-To address (overrides config).
        dry_run: Compose everything but skip writing and sending.
        client: SendGrid client to use instead of building one from config.

    Returns:
        PipelineResult with the session, ledgers, summary and outputs.

    Raises:
        FileNotFoundError: If the source (or an explicit config) is missing.
        ValueError: On bad overrides, or sending without a from address or API key.
        csv.Error: On a malformed CSV file.
    """
    result = PipelineResult(started_at=datetime.now())

    # ------------------------------------------------------------------
    # STEP 1: Configuration
    # ------------------------------------------------------------------
    logger.info("=" * 65)
    logger.info("  Overdue Reminder Pipeline")
    logger.info("=" * 65)

    config = config or get_config(config_path)
    from_email = from_email or config.sender.from_email
    reply_to = reply_to or config.sender.reply_to or None

    if send and not dry_run and not from_email:
        raise ValueError("A from address is required to send (--from or REMINDER_FROM_EMAIL)")

    # ------------------------------------------------------------------
    # STEP 2-3: Load and map
    # ------------------------------------------------------------------
    session = load_upload(
        source,
        aliases=config.columns.as_dict(),
        chunk_size=config.ingest.chunk_size,
        encoding=config.ingest.encoding,
        delimiter=config.ingest.delimiter,
        sheet_name=config.ingest.sheet_name or None,
    )
    result.session = session

    if map_overrides:
        session.override_mapping(**map_overrides)

    unmapped = session.field_map.unmapped_fields
    if unmapped:
        logger.warning("Unmapped columns: %s", ", ".join(unmapped))

    # ------------------------------------------------------------------
    # STEP 4: Aggregate
    # ------------------------------------------------------------------
    result.ledgers = session.ledgers(as_of)
    result.summary = session.summary(as_of)

    # ------------------------------------------------------------------
    # STEP 5-6: Compose
    # ------------------------------------------------------------------
    catalog = load_catalog(config.sendgrid)
    policy = resolve_policy(
        catalog,
        template_id or config.template.template_id or config.sendgrid.default_template_id,
        brand=config.brand.name,
        currency_symbol=config.brand.currency_symbol,
        subject_template=config.template.subject_template,
        body_template=config.template.body_template,
        subject_context=config.template.subject_context,
    )
    engine = TemplateEngine(brand=config.brand)
    composer = ReminderComposer(policy, engine)

    selected = _select_ledgers(result.ledgers, customers)
    result.selected_customers = list(selected)
    composed = [composer.compose(ledger, name) for name, ledger in selected.items()]
    result.payloads = [p for p in composed if p is not None]
    logger.info(
        "Composed %d reminders for %d selected customers",
        len(result.payloads), len(selected),
    )

    # ------------------------------------------------------------------
    # STEP 7: Preview / export / send
    # ------------------------------------------------------------------
    if preview:
        match = next((p for p in result.payloads if p.customer_name == preview.strip()), None)
        if match is None:
            print(f"\nNo reminder for {preview!r} (not found or nothing payable).")
        else:
            _print_preview(match)

    if export_zip is True:
        export_zip = config.output.default_export_path()
        if not dry_run:
            config.output.ensure_dirs()

    if export_zip:
        if dry_run:
            print(f"\n[DRY RUN] Would write {len(result.payloads)} reminders to {export_zip}")
        else:
            result.export_path = write_zip(
                result.payloads, export_zip, from_email or "", reply_to, engine,
            )
            print(f"\nExported {len(result.payloads)} reminders to: {result.export_path}")

    if send:
        if dry_run:
            print(f"\n[DRY RUN] Would send {len(result.payloads)} reminders via SendGrid")
        else:
            client = client or SendGridClient(
                config.sendgrid.api_key,
                base_url=config.sendgrid.base_url,
                timeout=config.sendgrid.timeout,
                logo_url=config.brand.logo_url if config.sendgrid.embed_logo else "",
            )
            result.send_report = send_reminders(
                composed,
                client,
                from_email,
                reply_to=reply_to,
                template_id=policy.template_id,
                engine=engine,
                pacing_seconds=config.sendgrid.pacing_seconds,
            )
            print(f"\nDone. {result.send_report.summary()}")

    result.completed_at = datetime.now()
    logger.info("Pipeline complete in %.1f seconds", result.duration_seconds)
    return result


# ---------------------------------------------------------------------------
# Summary Printer
# ---------------------------------------------------------------------------

def _print_pipeline_summary(result: PipelineResult, symbol: str = "$") -> None:
    """Print a human-readable summary of the pipeline run."""
    summary = result.summary
    print()
    print("=" * 65)
    print("  Overdue Reminder -- Pipeline Summary")
    print("=" * 65)
    if result.session is not None:
        mapping = result.session.field_map.to_dict()
        print("  Column mapping:")
        for name, header in mapping.items():
            print(f"    {name:<10s}: {header or '(unmapped)'}")
        print("-" * 65)
    print(f"  Customers           : {summary.customer_count}")
    print(f"  Rows                : {summary.row_count}")
    print(f"  Skipped records     : {summary.skipped_records}")
    print(f"  Total overdue       : {format_money(summary.total_overdue, symbol)}")
    print(f"  Total credits       : {format_money(summary.total_credits, symbol)}")
    print(f"  Net payable         : {format_money(summary.net_payable, symbol)}")
    print("-" * 65)
    print("  Aging (oldest item per customer):")
    for bucket in AgingBucket:
        count = summary.bucket_counts[bucket]
        amount = summary.bucket_amounts[bucket]
        print(f"    {bucket.value:<6s}: {count:4d} customers  {format_money(amount, symbol):>14s}")
    print("-" * 65)
    print(f"  Eligible for reminder: {summary.eligible_count}")
    print(f"  REMINDERS COMPOSED   : {result.reminders_composed}")
    if result.send_report is not None:
        print(f"  Send results         : {result.send_report.summary()}")
        for err in result.send_report.errors:
            print(f"    {err}")
    print("=" * 65)


def _attach_log_file(output: OutputConfig) -> Optional[logging.Handler]:
    """Mirror log records into output.log_file when one is configured."""
    if not output.log_file:
        return None
    output.ensure_dirs()
    handler = logging.FileHandler(output.resolve(output.log_file), encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    logger.info("Logging to %s", handler.baseFilename)
    return handler


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 = success, 1 = error).
    """
    parser = argparse.ArgumentParser(
        description="Overdue Reminder - Build overdue-invoice reminders from an AR export",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m overdue_reminder.main data/ar.csv\n"
            "  python -m overdue_reminder.main data/ar.csv --map amount=\"Balance Due\"\n"
            "  python -m overdue_reminder.main data/ar.xlsx --preview \"Acme\"\n"
            "  python -m overdue_reminder.main data/ar.csv --export-zip output/reminders.zip\n"
            "  python -m overdue_reminder.main data/ar.csv --export-zip\n"
            "  python -m overdue_reminder.main data/ar.csv --send --from ar@example.com\n"
        ),
    )
    parser.add_argument("source", help="Path to the AR export (.csv or .xlsx)")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: project root config.yaml)",
    )
    parser.add_argument(
        "--map",
        dest="map_pairs",
        action="append",
        metavar="FIELD=HEADER",
        help="Override a column mapping, e.g. --map amount=\"Balance Due\" (repeatable)",
    )
    parser.add_argument("--as-of", type=str, default=None, help="Aging reference date (YYYY-MM-DD)")
    parser.add_argument("--template", type=str, default=None, help="Template id from the catalog")
    parser.add_argument(
        "--customer",
        dest="customers",
        action="append",
        metavar="NAME",
        help="Only remind this customer (repeatable)",
    )
    parser.add_argument("--preview", type=str, default=None, metavar="NAME",
                        help="Print the reminder for one customer")
    parser.add_argument("--export-zip", type=str, nargs="?", const=True, default=None,
                        metavar="PATH",
                        help="Write one .eml per reminder into a zip archive "
                             "(default: a timestamped file in output.export_dir)")
    parser.add_argument("--send", action="store_true", help="Send reminders via SendGrid")
    parser.add_argument("--from", dest="from_email", type=str, default=None,
                        help="Verified sender address (overrides config)")
    parser.add_argument("--reply-to", type=str, default=None,
                        help="Reply-To address (overrides config)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compose reminders without writing or sending anything",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )

    file_handler = None
    try:
        config = get_config(args.config)
        file_handler = _attach_log_file(config.output)
        result = run_pipeline(
            args.source,
            config=config,
            map_overrides=parse_map_overrides(args.map_pairs),
            as_of=_parse_as_of(args.as_of),
            template_id=args.template,
            customers=args.customers,
            preview=args.preview,
            export_zip=args.export_zip,
            send=args.send,
            from_email=args.from_email,
            reply_to=args.reply_to,
            dry_run=args.dry_run,
        )
        _print_pipeline_summary(result, config.brand.currency_symbol)

        if result.send_report is not None and result.send_report.failed:
            return 1
        return 0

    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except csv.Error as exc:
        logger.error("Could not parse CSV: %s", exc)
        print(f"\nERROR: Could not parse CSV: {exc}")
        return 1
    except Exception as exc:
        logger.exception("Unexpected error in pipeline")
        print(f"\nUNEXPECTED ERROR: {exc}")
        return 1
    finally:
        if file_handler is not None:
            logging.getLogger().removeHandler(file_handler)
            file_handler.close()


if __name__ == "__main__":
    sys.exit(main())
