"""
IMAP mailbox tests.

imaplib.IMAP4_SSL is patched with a MagicMock so no network is touched.
"""

import imaplib
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from email.utils import format_datetime
from unittest.mock import MagicMock, patch

import pytest

from codebot.services.mailbox import (
    ImapMailbox,
    build_search_criteria,
    parse_message,
)

NOW = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _raw_email(
    subject: str = "Netflix: Your sign-in code",
    plain: str = "Your code is 483920.",
    html: str = None,
    date=NOW,
) -> bytes:
    msg = EmailMessage()
    msg["From"] = "Netflix <info@account.netflix.com>"
    msg["To"] = "viewer@example.com"
    msg["Subject"] = subject
    if isinstance(date, datetime):
        msg["Date"] = format_datetime(date)
    elif date is not None:
        msg["Date"] = date
    if plain is not None:
        msg.set_content(plain)
        if html is not None:
            msg.add_alternative(html, subtype="html")
    elif html is not None:
        msg.set_content(html, subtype="html")
    return msg.as_bytes()


def _imap(search_ids: bytes = b"1 2 3", raw: bytes = None) -> MagicMock:
    mail = MagicMock()
    mail.login.return_value = ("OK", [b"Logged in"])
    mail.select.return_value = ("OK", [b"3"])
    mail.search.return_value = ("OK", [search_ids])
    mail.fetch.return_value = ("OK", [(b"3 (RFC822 {100}", raw or _raw_email()), b")"])
    return mail


def _mailbox() -> ImapMailbox:
    return ImapMailbox(host="imap.example.com", port=993, user="viewer@example.com", password="pw")


# ---------------------------------------------------------------------------
# Search criteria
# ---------------------------------------------------------------------------

class TestBuildSearchCriteria:
    def test_sender_and_since(self):
        criteria = build_search_criteria("info@account.netflix.com", [], NOW)

        assert criteria == ["FROM", '"info@account.netflix.com"', "SINCE", "17-Oct-2026"]

    def test_single_subject(self):
        criteria = build_search_criteria(None, ["sign-in code"], NOW)

        assert criteria == ["SINCE", "17-Oct-2026", "SUBJECT", '"sign-in code"']

    def test_multiple_subjects_use_prefix_or_chain(self):
        criteria = build_search_criteria(None, ["a", "b", "c"], NOW)

        assert " ".join(criteria) == 'SINCE 17-Oct-2026 OR OR SUBJECT "a" SUBJECT "b" SUBJECT "c"'

    def test_blank_subjects_are_dropped(self):
        criteria = build_search_criteria(None, ["", "  ", "code"], NOW)

        assert criteria[-2:] == ["SUBJECT", '"code"']
        assert "OR" not in criteria

    def test_quotes_are_escaped(self):
        criteria = build_search_criteria(None, ['say "hi"'], NOW)

        assert criteria[-1] == '"say \\"hi\\""'

    def test_since_starts_a_day_early_in_english(self):
        local = datetime(2026, 3, 1, 1, 0, tzinfo=timezone(timedelta(hours=5)))

        assert build_search_criteria(None, [], local) == ["SINCE", "27-Feb-2026"]

    def test_window_just_after_utc_midnight_covers_server_local_date(self):
        """02:45 UTC is still the previous day on a US Pacific server."""
        since = datetime(2026, 10, 18, 2, 45, tzinfo=timezone.utc)

        assert build_search_criteria(None, [], since) == ["SINCE", "17-Oct-2026"]


# ---------------------------------------------------------------------------
# MIME parsing
# ---------------------------------------------------------------------------

class TestParseMessage:
    def test_plain_text_message(self):
        message = parse_message(_raw_email())

        assert message.subject == "Netflix: Your sign-in code"
        assert "info@account.netflix.com" in message.sender
        assert "483920" in message.body
        assert message.received_at == NOW

    def test_prefers_plain_over_html(self):
        raw = _raw_email(plain="plain 1111", html="<p>html 2222</p>")

        assert "1111" in parse_message(raw).body

    def test_html_only_message(self):
        raw = _raw_email(plain=None, html='<a href="https://example.com/verify">Get code</a>')

        assert "https://example.com/verify" in parse_message(raw).body

    def test_missing_date_uses_fetch_time(self):
        before = datetime.now(timezone.utc)

        message = parse_message(_raw_email(date=None))

        assert message.received_at >= before

    def test_naive_date_is_treated_as_utc(self):
        raw = _raw_email(date="Sun, 18 Oct 2026 09:30:00 -0000")

        assert parse_message(raw).received_at == NOW


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

class TestFetchLatest:
    @pytest.mark.asyncio
    async def test_returns_newest_matching_message(self):
        mail = _imap()
        with patch("codebot.services.mailbox.imaplib.IMAP4_SSL", return_value=mail) as ssl:
            message = await _mailbox().fetch_latest(
                "info@account.netflix.com", ["sign-in code"], NOW - timedelta(minutes=15)
            )

        assert message is not None
        assert "483920" in message.body
        ssl.assert_called_once_with("imap.example.com", 993, timeout=30.0)
        mail.login.assert_called_once_with("viewer@example.com", "pw")
        mail.select.assert_called_once_with("INBOX", readonly=True)
        mail.fetch.assert_called_once_with(b"3", "(RFC822)")
        mail.logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_search_uses_built_criteria(self):
        mail = _imap()
        since = NOW - timedelta(minutes=15)
        with patch("codebot.services.mailbox.imaplib.IMAP4_SSL", return_value=mail):
            await _mailbox().fetch_latest("info@account.netflix.com", ["a", "b"], since)

        args = mail.search.call_args.args
        assert args[0] is None
        assert list(args[1:]) == build_search_criteria("info@account.netflix.com", ["a", "b"], since)

    @pytest.mark.asyncio
    async def test_no_results_returns_none(self):
        mail = _imap(search_ids=b"")
        with patch("codebot.services.mailbox.imaplib.IMAP4_SSL", return_value=mail):
            message = await _mailbox().fetch_latest(None, [], NOW - timedelta(minutes=15))

        assert message is None
        mail.fetch.assert_not_called()
        mail.logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_message_older_than_window_returns_none(self):
        """IMAP SINCE is day-granular; the exact window is re-checked."""
        mail = _imap(raw=_raw_email(date=NOW - timedelta(hours=3)))
        with patch("codebot.services.mailbox.imaplib.IMAP4_SSL", return_value=mail):
            message = await _mailbox().fetch_latest(None, [], NOW - timedelta(minutes=15))

        assert message is None

    @pytest.mark.asyncio
    async def test_login_failure_propagates_and_logs_out(self):
        mail = _imap()
        mail.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
        with patch("codebot.services.mailbox.imaplib.IMAP4_SSL", return_value=mail):
            with pytest.raises(imaplib.IMAP4.error):
                await _mailbox().fetch_latest(None, [], NOW)

        mail.logout.assert_called_once()
