"""
Runtime configuration loaded from environment variables (and a .env file).

Environment variables
---------------------
EMAIL_HOST                 IMAP host (default: imap.gmail.com)
EMAIL_PORT                 IMAP port (default: 993)
EMAIL_USER                 Mailbox login (required)
EMAIL_PASSWORD             Mailbox password / app password (required)
EMAIL_SENDER_FILTER        Only consider mail from this sender (required)
EMAIL_SUBJECT_FILTER       Comma-separated subject filters for the IMAP search
LOOKBACK_MINUTES           Default lookback window (default: 15)
SUBJECT_RULES              "matcher=strategy" pairs separated by ";"
                           strategies: direct, link_authenticated, link_regex
LINK_MARKERS               Comma-separated URL path markers (default: verify,code)
NETFLIX_EMAIL              Optional login for verification pages
NETFLIX_PASSWORD           Optional password for verification pages
SESSION_DIR                Where browser sessions are persisted (default: .sessions)
BROWSER_HEADLESS           "false" to watch the browser (default: true)
PAGE_TIMEOUT_SECONDS       Per-navigation timeout (default: 30)
RESOLUTION_TIMEOUT_SECONDS Whole verification-page visit timeout (default: 90)
CODE_TARGET_SELECTOR       CSS selector of the element holding the code
WHATSAPP_RECIPIENT_ID      Comma-separated chat ids to deliver to (required)
WHATSAPP_GATEWAY_URL       WhatsApp HTTP gateway base URL (default: http://localhost:3000)
WHATSAPP_GATEWAY_API_KEY   Gateway API key, sent as X-Api-Key
WHATSAPP_SESSION           Gateway session name (default: default)
WHATSAPP_WEBHOOK_SECRET    Shared secret for gateway webhook events
CHANNEL_POLL_SECONDS       Gateway status poll interval (default: 5)
"""

import logging
import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from codebot.models.resolution import (
    Credentials,
    ResolutionContext,
    ResolutionStrategy,
    SubjectRule,
)
from codebot.services.code_patterns import DEFAULT_LINK_MARKERS
from codebot.services.page_resolver import OTP_SELECTOR

load_dotenv()

logger = logging.getLogger(__name__)

REQUIRED_VARIABLES = (
    "EMAIL_USER",
    "EMAIL_PASSWORD",
    "EMAIL_SENDER_FILTER",
    "WHATSAPP_RECIPIENT_ID",
)

DEFAULT_SUBJECT_RULES = (
    "sign-in code=direct;"
    "temporary access code=link_authenticated;"
    "household=link_regex"
)


def _split_csv(value: Optional[str]) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}; using {default}")
        return default
    return value if value > 0 else default


def parse_subject_rules(raw: Optional[str]) -> tuple[SubjectRule, ...]:
    """
    Parse "matcher=strategy;matcher=strategy" into ordered SubjectRules.

    Raises ValueError for a malformed pair or an unknown strategy name.
    """
    rules: list[SubjectRule] = []
    for chunk in (raw or "").split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        matcher, sep, strategy = chunk.rpartition("=")
        if not sep or not matcher.strip():
            raise ValueError(f"Invalid subject rule {chunk!r}; expected matcher=strategy")
        try:
            resolved = ResolutionStrategy(strategy.strip().lower())
        except ValueError:
            supported = sorted(s.value for s in ResolutionStrategy)
            raise ValueError(
                f"Unknown resolution strategy {strategy.strip()!r}. "
                f"Supported strategies: {supported}"
            ) from None
        rules.append(SubjectRule(matcher=matcher, strategy=resolved))
    return tuple(rules)


class Settings(BaseModel):
    email_host: str = "imap.gmail.com"
    email_port: int = 993
    email_user: Optional[str] = None
    email_password: Optional[str] = None
    email_sender_filter: Optional[str] = None
    email_subject_filters: tuple[str, ...] = ()
    lookback_minutes: float = 15.0

    subject_rules: tuple[SubjectRule, ...] = ()
    link_markers: tuple[str, ...] = DEFAULT_LINK_MARKERS
    netflix_email: Optional[str] = None
    netflix_password: Optional[str] = None

    session_dir: Path = Path(".sessions")
    browser_headless: bool = True
    page_timeout_seconds: float = 30.0
    resolution_timeout_seconds: float = 90.0
    code_target_selector: str = OTP_SELECTOR

    whatsapp_recipients: tuple[str, ...] = ()
    whatsapp_gateway_url: str = "http://localhost:3000"
    whatsapp_gateway_api_key: Optional[str] = None
    whatsapp_session: str = "default"
    whatsapp_webhook_secret: Optional[str] = None
    channel_poll_seconds: float = 5.0

    @property
    def credentials(self) -> Optional[Credentials]:
        if self.netflix_email and self.netflix_password:
            return Credentials(email=self.netflix_email, password=self.netflix_password)
        return None

    def resolution_context(self) -> ResolutionContext:
        return ResolutionContext(
            subject_rules=self.subject_rules,
            lookback=timedelta(minutes=self.lookback_minutes),
            link_markers=self.link_markers,
            credentials=self.credentials,
        )


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        email_host=os.getenv("EMAIL_HOST") or "imap.gmail.com",
        email_port=int(_get_float("EMAIL_PORT", 993)),
        email_user=os.getenv("EMAIL_USER") or None,
        email_password=os.getenv("EMAIL_PASSWORD") or None,
        email_sender_filter=os.getenv("EMAIL_SENDER_FILTER") or None,
        email_subject_filters=_split_csv(os.getenv("EMAIL_SUBJECT_FILTER")),
        lookback_minutes=_get_float("LOOKBACK_MINUTES", 15.0),
        subject_rules=parse_subject_rules(
            os.getenv("SUBJECT_RULES") or DEFAULT_SUBJECT_RULES
        ),
        link_markers=_split_csv(os.getenv("LINK_MARKERS")) or DEFAULT_LINK_MARKERS,
        netflix_email=os.getenv("NETFLIX_EMAIL") or None,
        netflix_password=os.getenv("NETFLIX_PASSWORD") or None,
        session_dir=Path(os.getenv("SESSION_DIR") or ".sessions"),
        browser_headless=_get_bool("BROWSER_HEADLESS", True),
        page_timeout_seconds=_get_float("PAGE_TIMEOUT_SECONDS", 30.0),
        resolution_timeout_seconds=_get_float("RESOLUTION_TIMEOUT_SECONDS", 90.0),
        code_target_selector=os.getenv("CODE_TARGET_SELECTOR") or OTP_SELECTOR,
        whatsapp_recipients=_split_csv(os.getenv("WHATSAPP_RECIPIENT_ID")),
        whatsapp_gateway_url=os.getenv("WHATSAPP_GATEWAY_URL") or "http://localhost:3000",
        whatsapp_gateway_api_key=os.getenv("WHATSAPP_GATEWAY_API_KEY") or None,
        whatsapp_session=os.getenv("WHATSAPP_SESSION") or "default",
        whatsapp_webhook_secret=os.getenv("WHATSAPP_WEBHOOK_SECRET") or None,
        channel_poll_seconds=_get_float("CHANNEL_POLL_SECONDS", 5.0),
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return load_settings()


def validate_settings() -> list[str]:
    """Return the names of required variables that are missing."""
    return [name for name in REQUIRED_VARIABLES if not os.getenv(name)]
