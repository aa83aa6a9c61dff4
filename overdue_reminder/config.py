"""
Overdue Reminder -- Configuration Module

Centralizes all configuration for the reminder generator.
Loads defaults from dataclasses, then overlays any overrides from config.yaml.

Usage:
    from overdue_reminder.config import get_config
    cfg = get_config()                         # loads config.yaml if present
    cfg = get_config("path/to/custom.yaml")    # loads a specific file
    print(cfg.brand.name)                      # Paramount Liquor
    print(cfg.columns.amount)                  # ["amount", "total", ...]
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

# ---------------------------------------------------------------------------
# Path constants
# ---------------------------------------------------------------------------
_THIS_DIR = Path(__file__).resolve().parent          # overdue_reminder/
PROJECT_ROOT = _THIS_DIR.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
TEMPLATE_DIR = _THIS_DIR / "templates"

DEFAULT_SENDGRID_TEMPLATE_ID = "d-c32e5033436a4186a760c43071a0a103"


# ===================================================================
# 1. Branding
# ===================================================================

@dataclass
class BrandInfo:
    """Company identity used in subject lines and the HTML body."""
    name: str = "Paramount Liquor"
    department: str = "Accounts Receivable"
    primary_color: str = "#0f172a"
    accent_color: str = "#0ea5e9"
    border_color: str = "#e5e7eb"
    subtle_color: str = "#f8fafc"
    muted_color: str = "#475569"
    footer_color: str = "#64748b"
    currency_symbol: str = "$"
    logo_url: str = "https://invoice-remind.vercel.app/logo.png"


# ===================================================================
# 2. Sender Info
# ===================================================================

@dataclass
class SenderInfo:
    """FROM / Reply-To identity.  The from address must be verified in SendGrid."""
    from_email: str = ""
    reply_to: str = ""

    def __post_init__(self):
        self.from_email = self.from_email or os.environ.get("REMINDER_FROM_EMAIL", "")
        self.reply_to = self.reply_to or os.environ.get("REMINDER_REPLY_TO", "")


# ===================================================================
# 3. SendGrid Settings
# ===================================================================

@dataclass
class SendGridSettings:
    """Transactional email provider settings."""
    api_key: str = ""                 # set via env var SENDGRID_API_KEY
    base_url: str = "https://api.sendgrid.com/v3"
    default_template_id: str = DEFAULT_SENDGRID_TEMPLATE_ID
    timeout: float = 15.0
    pacing_seconds: float = 0.15      # pause between per-customer sends
    embed_logo: bool = True

    def __post_init__(self):
        self.api_key = self.api_key or os.environ.get("SENDGRID_API_KEY", "")


# ===================================================================
# 4. Column Aliases
# ===================================================================

@dataclass
class ColumnAliases:
    """Ordered lowercase header aliases per canonical field.

    Earlier aliases win.  Exact matches are tried before substring matches.
    """
    customer: list[str] = field(default_factory=lambda: [
        "customer", "customer name", "account name", "client", "trading name",
    ])
    email: list[str] = field(default_factory=lambda: [
        "email", "e-mail", "email address",
    ])
    invoice: list[str] = field(default_factory=lambda: [
        "invoice", "invoice number", "invoice #", "doc",
    ])
    amount: list[str] = field(default_factory=lambda: [
        "amount", "total", "balance", "amount due", "outstanding",
        "total overdue", "debit",
    ])
    due_date: list[str] = field(default_factory=lambda: [
        "duedate", "due date", "due",
    ])

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "customer": list(self.customer),
            "email": list(self.email),
            "invoice": list(self.invoice),
            "amount": list(self.amount),
            "due_date": list(self.due_date),
        }


# ===================================================================
# 5. Template Settings
# ===================================================================

@dataclass
class TemplateSettings:
    """Which template / subject context the composer uses by default."""
    subject_context: str = ""         # empty = the chosen template's context
    template_id: str = ""             # empty = SendGrid default template
    # Free-form overrides using {{Token}} placeholders.  Empty = built-in.
    subject_template: str = ""
    body_template: str = ""


# ===================================================================
# 6. Ingest Settings
# ===================================================================

@dataclass
class IngestSettings:
    """How source files are read."""
    chunk_size: int = 500
    encoding: str = "utf-8-sig"
    delimiter: str = ","
    sheet_name: str = ""              # XLSX only; empty = first sheet


# ===================================================================
# 7. Output Directory
# ===================================================================

@dataclass
class OutputConfig:
    """Where exported mail archives and logs are written."""
    export_dir: str = "output/exports"   # --export-zip without a path lands here
    log_file: str = ""                  # empty = console logging only

    def resolve(self, rel_path: str) -> Path:
        p = Path(rel_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p

    def ensure_dirs(self) -> None:
        """Create output directories if they don't exist."""
        self.resolve(self.export_dir).mkdir(parents=True, exist_ok=True)
        if self.log_file:
            self.resolve(self.log_file).parent.mkdir(parents=True, exist_ok=True)

    def default_export_path(self, now: Optional[datetime] = None) -> Path:
        """Timestamped archive path inside export_dir."""
        timestamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        return self.resolve(self.export_dir) / f"reminders_{timestamp}.zip"


# ===================================================================
# Master Config
# ===================================================================

@dataclass
class ReminderConfig:
    """Top-level configuration container."""
    brand: BrandInfo = field(default_factory=BrandInfo)
    sender: SenderInfo = field(default_factory=SenderInfo)
    sendgrid: SendGridSettings = field(default_factory=SendGridSettings)
    columns: ColumnAliases = field(default_factory=ColumnAliases)
    template: TemplateSettings = field(default_factory=TemplateSettings)
    ingest: IngestSettings = field(default_factory=IngestSettings)
    output: OutputConfig = field(default_factory=OutputConfig)


# ===================================================================
# YAML Loading
# ===================================================================

def _apply_yaml_to_config(cfg: ReminderConfig, data: dict) -> None:
    """Apply a parsed YAML dict onto a ReminderConfig instance."""
    _section_map = {
        "brand": cfg.brand,
        "sender": cfg.sender,
        "sendgrid": cfg.sendgrid,
        "columns": cfg.columns,
        "template": cfg.template,
        "ingest": cfg.ingest,
        "output": cfg.output,
    }

    for section_key, section_obj in _section_map.items():
        if section_key in data and isinstance(data[section_key], dict):
            for attr, val in data[section_key].items():
                if hasattr(section_obj, attr):
                    setattr(section_obj, attr, val)

    # Alias lists are compared lowercased
    for name, aliases in cfg.columns.as_dict().items():
        setattr(cfg.columns, name, [str(a).strip().lower() for a in aliases])


def get_config(yaml_path: Optional[str | Path] = None) -> ReminderConfig:
    """Build a ReminderConfig, optionally overlaying values from a YAML file.

    Args:
        yaml_path: Path to a config.yaml file.  If None, looks for the
                   default config.yaml at the project root.  If that file
                   doesn't exist, returns pure defaults.

    Returns:
        Fully populated ReminderConfig instance.

    Raises:
        FileNotFoundError: If an explicit yaml_path does not exist.
    """
    cfg = ReminderConfig()

    if yaml_path is not None:
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
    else:
        path = DEFAULT_CONFIG_PATH

    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        _apply_yaml_to_config(cfg, data)

    return cfg
