"""
IMAP mailbox collaborator.

fetch_latest() returns the single newest message from the configured sender,
optionally restricted to a set of subject filters, received inside the
lookback window. It returns None when nothing matches.

IMAP SINCE only has day granularity and is evaluated in the server's own
timezone, so the search starts one day early and the parsed Date header is
re-checked against the exact window after fetching; a stale match is treated
as None.

imaplib is blocking, so the whole exchange runs in a worker thread to keep
other requests moving.
"""

import asyncio
import email
import imaplib
import logging
from datetime import datetime, timedelta, timezone
from email import policy
from email.message import EmailMessage
from email.utils import parsedate_to_datetime
from typing import Iterable, Optional

from codebot.models.message import InboundMessage

logger = logging.getLogger(__name__)

# IMAP dates use English month abbreviations regardless of locale.
_MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

SINCE_SLACK = timedelta(days=1)


def _imap_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _imap_date(moment: datetime) -> str:
    return f"{moment.day:02d}-{_MONTH_ABBR[moment.month - 1]}-{moment.year}"


def build_search_criteria(
    sender: Optional[str],
    subject_filters: Iterable[str],
    since: datetime,
) -> list[str]:
    """
    Build IMAP SEARCH criteria tokens.

    Multiple subject filters are combined with a prefix OR chain:
      ["a", "b", "c"] → OR OR SUBJECT "a" SUBJECT "b" SUBJECT "c"
    """
    criteria: list[str] = []
    if sender:
        criteria += ["FROM", _imap_quote(sender)]
    # SINCE is compared against the server's local date, which can be a day
    # behind UTC; fetch_latest re-checks the exact window.
    criteria += ["SINCE", _imap_date((since - SINCE_SLACK).astimezone(timezone.utc))]

    subjects = [s.strip() for s in subject_filters if s and s.strip()]
    if subjects:
        criteria += ["OR"] * (len(subjects) - 1)
        for subject in subjects:
            criteria += ["SUBJECT", _imap_quote(subject)]
    return criteria


def _received_at(msg: EmailMessage) -> datetime:
    raw = msg.get("Date")
    parsed = None
    if raw:
        try:
            parsed = parsedate_to_datetime(str(raw))
        except (TypeError, ValueError):
            parsed = None
    if parsed is None:
        logger.warning("Message has no usable Date header; using fetch time")
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _body_text(msg: EmailMessage) -> str:
    """Plain-text body, falling back to the HTML part when there is none."""
    part = msg.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def parse_message(raw: bytes) -> InboundMessage:
    msg = email.message_from_bytes(raw, policy=policy.default)
    return InboundMessage(
        subject=str(msg.get("Subject", "") or ""),
        sender=str(msg.get("From", "") or ""),
        body=_body_text(msg),
        received_at=_received_at(msg),
    )


class ImapMailbox:
    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        folder: str = "INBOX",
        timeout_seconds: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.folder = folder
        self.timeout_seconds = timeout_seconds

    async def fetch_latest(
        self,
        sender: Optional[str],
        subject_filters: Iterable[str],
        since: datetime,
    ) -> Optional[InboundMessage]:
        subject_filters = list(subject_filters)
        raw = await asyncio.to_thread(self._fetch_latest_raw, sender, subject_filters, since)
        if raw is None:
            return None

        message = parse_message(raw)
        if message.received_at < since:
            logger.info(
                f"Newest matching email is outside the lookback window "
                f"(received {message.received_at.isoformat()})"
            )
            return None
        return message

    def _fetch_latest_raw(
        self,
        sender: Optional[str],
        subject_filters: list[str],
        since: datetime,
    ) -> Optional[bytes]:
        criteria = build_search_criteria(sender, subject_filters, since)
        mail = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout_seconds)
        try:
            mail.login(self.user, self.password)
            status, _ = mail.select(self.folder, readonly=True)
            if status != "OK":
                raise imaplib.IMAP4.error(f"Could not open mailbox folder {self.folder!r}")

            status, msg_ids = mail.search(None, *criteria)
            if status != "OK" or not msg_ids or not msg_ids[0]:
                return None

            latest_id = msg_ids[0].split()[-1]
            status, msg_data = mail.fetch(latest_id, "(RFC822)")
            if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
                return None
            return msg_data[0][1]
        finally:
            try:
                mail.logout()
            except (imaplib.IMAP4.error, OSError):
                pass
