"""Configuration helpers for the rate-parity run."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import os
import re
from typing import Any, Dict, Mapping, Optional

from .models import DateWindow

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
_SETTING_KEYS = (
    "CHECKIN_OFFSET_DAYS",
    "NIGHTS",
    "MAX_HOTELS",
    "MAX_PAGES",
    "BATCH_SIZE",
    "MAX_RETRIES",
    "RETRY_BASE_DELAY",
    "DRY_RUN",
    "HEADLESS",
    "CAPTURE_LISTING_URLS",
)


class ConfigurationError(ValueError):
    """Raised when a run cannot start because its settings are unusable."""


@dataclass
class RunConfig:
    """Canonical configuration used by the parity workflow."""

    webhook_url: Optional[str] = None
    check_in_offset_days: int = 7
    nights: int = 2
    max_listings: int = 10
    max_pages: int = 40
    batch_size: int = 50
    max_retries: int = 4
    retry_base_delay: float = 1.0
    dry_run: bool = False
    headless: bool = True
    capture_listing_urls: bool = False
    raw_settings: Dict[str, Any] = field(default_factory=dict)

    def date_window(self, today: Optional[date] = None) -> DateWindow:
        """Return the stay window relative to ``today``."""

        return DateWindow.from_offset(today or date.today(), self.check_in_offset_days, self.nights)

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` for settings that would waste a run."""

        if not self.dry_run:
            if not self.webhook_url or not _URL_PATTERN.match(self.webhook_url):
                raise ConfigurationError(
                    "WEBHOOK_URL is not set or invalid; expected an http(s) URL"
                )
        for name in ("nights", "max_listings", "max_pages", "batch_size", "max_retries"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")
        if self.check_in_offset_days < 0:
            raise ConfigurationError("check_in_offset_days must not be negative")
        if self.retry_base_delay < 0:
            raise ConfigurationError("retry_base_delay must not be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Return a log-friendly version of the configuration."""

        return {
            "webhook_configured": bool(self.webhook_url),
            "check_in_offset_days": self.check_in_offset_days,
            "nights": self.nights,
            "max_listings": self.max_listings,
            "max_pages": self.max_pages,
            "batch_size": self.batch_size,
            "max_retries": self.max_retries,
            "retry_base_delay": self.retry_base_delay,
            "dry_run": self.dry_run,
            "headless": self.headless,
            "capture_listing_urls": self.capture_listing_urls,
        }


def _parse_int(value: Any, default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _parse_float(value: Any, default: float) -> float:
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        return default


def _parse_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def create_config(settings: Mapping[str, Any]) -> RunConfig:
    """Create a configuration from environment-style settings."""

    if not isinstance(settings, Mapping):
        raise TypeError("Unsupported configuration payload type: expected a mapping")

    webhook_url = str(settings.get("WEBHOOK_URL") or "").strip() or None
    return RunConfig(
        webhook_url=webhook_url,
        check_in_offset_days=_parse_int(settings.get("CHECKIN_OFFSET_DAYS"), 7),
        nights=_parse_int(settings.get("NIGHTS"), 2),
        max_listings=_parse_int(settings.get("MAX_HOTELS"), 10),
        max_pages=_parse_int(settings.get("MAX_PAGES"), 40),
        batch_size=_parse_int(settings.get("BATCH_SIZE"), 50),
        max_retries=_parse_int(settings.get("MAX_RETRIES"), 4),
        retry_base_delay=_parse_float(settings.get("RETRY_BASE_DELAY"), 1.0),
        dry_run=_parse_bool(settings.get("DRY_RUN"), False),
        headless=_parse_bool(settings.get("HEADLESS"), True),
        capture_listing_urls=_parse_bool(settings.get("CAPTURE_LISTING_URLS"), False),
        raw_settings={key: settings[key] for key in _SETTING_KEYS if key in settings},
    )


def create_config_from_env(environ: Optional[Mapping[str, str]] = None) -> RunConfig:
    """Unified helper reading the process environment."""

    return create_config(os.environ if environ is None else environ)
