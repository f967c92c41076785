"""
Code resolver tests: subject-rule dispatch and the two resolution stages.

The secondary page resolver is replaced with an AsyncMock so these tests only
check which strategy runs and what is passed along.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from codebot.models.message import InboundMessage
from codebot.models.outcome import Code, NotFound, PendingUrl
from codebot.models.resolution import (
    Credentials,
    ResolutionContext,
    ResolutionStrategy,
    SubjectRule,
)
from codebot.services.code_resolver import CodeResolver, resolve

VERIFY_URL = "https://www.netflix.com/account/travel/verify?nftoken=abc"
CREDENTIALS = Credentials(email="viewer@example.com", password="secret")


def _context(credentials=CREDENTIALS, **kwargs) -> ResolutionContext:
    return ResolutionContext(
        subject_rules=(
            SubjectRule(matcher="sign-in code", strategy=ResolutionStrategy.DIRECT_REGEX_ONLY),
            SubjectRule(
                matcher="temporary access code",
                strategy=ResolutionStrategy.LINK_THEN_AUTHENTICATED_EXTRACTION,
            ),
            SubjectRule(matcher="household", strategy=ResolutionStrategy.LINK_THEN_REGEX_FALLBACK),
        ),
        credentials=credentials,
        **kwargs,
    )


def _message(subject: str, body: str) -> InboundMessage:
    return InboundMessage(
        subject=subject,
        sender="info@account.netflix.com",
        body=body,
        received_at=datetime.now(timezone.utc),
    )


def _page_resolver(outcome=None) -> AsyncMock:
    page_resolver = AsyncMock()
    page_resolver.resolve_from_url.return_value = outcome or NotFound()
    return page_resolver


# ---------------------------------------------------------------------------
# First stage
# ---------------------------------------------------------------------------

class TestResolve:
    def test_direct_rule_reads_code_from_body(self):
        message = _message("Netflix: Your sign-in code", "Your code is 483920. It expires in 15 minutes.")

        assert resolve(message, _context()) == Code(value="483920")

    def test_direct_rule_never_returns_link(self):
        message = _message("Your sign-in code", f"Open {VERIFY_URL} to continue")

        assert resolve(message, _context()) == NotFound()

    def test_link_rule_returns_pending_url(self):
        message = _message("Your temporary access code", f"Get code: {VERIFY_URL}")

        assert resolve(message, _context()) == PendingUrl(url=VERIFY_URL)

    def test_link_rule_without_link_scans_body(self):
        message = _message("Your temporary access code", "Enter 7788 on your TV")

        assert resolve(message, _context()) == Code(value="7788")

    def test_link_rule_without_link_or_digits(self):
        message = _message("Your temporary access code", "Nothing to see here")

        assert resolve(message, _context()) == NotFound()

    def test_unmatched_subject_scans_body_only(self):
        message = _message("Welcome to Netflix", f"Visit {VERIFY_URL} or use 1234")

        assert resolve(message, _context()) == Code(value="1234")

    def test_subject_is_trimmed_and_casefolded(self):
        message = _message("   NETFLIX: YOUR TEMPORARY ACCESS CODE  ", f"{VERIFY_URL}")

        assert resolve(message, _context()) == PendingUrl(url=VERIFY_URL)

    def test_first_matching_rule_wins(self):
        context = ResolutionContext(
            subject_rules=(
                SubjectRule(matcher="code", strategy=ResolutionStrategy.DIRECT_REGEX_ONLY),
                SubjectRule(
                    matcher="temporary access code",
                    strategy=ResolutionStrategy.LINK_THEN_REGEX_FALLBACK,
                ),
            )
        )
        message = _message("Your temporary access code", f"{VERIFY_URL} 4455")

        assert resolve(message, context) == Code(value="4455")

    def test_custom_link_markers(self):
        message = _message("Your temporary access code", "https://example.com/otp/1")

        outcome = resolve(message, _context(link_markers=("otp",)))

        assert outcome == PendingUrl(url="https://example.com/otp/1")

    def test_is_idempotent(self):
        message = _message("Your temporary access code", f"Get code: {VERIFY_URL}")
        context = _context()

        assert resolve(message, context) == resolve(message, context)

    def test_unexpected_error_is_not_found(self):
        message = _message("Your sign-in code", "1234")
        with patch(
            "codebot.services.code_resolver.find_code",
            side_effect=RuntimeError("boom"),
        ):
            assert resolve(message, _context()) == NotFound()


# ---------------------------------------------------------------------------
# Second stage
# ---------------------------------------------------------------------------

class TestResolveFinal:
    @pytest.mark.asyncio
    async def test_inline_code_skips_page_resolver(self):
        page_resolver = _page_resolver()
        resolver = CodeResolver(page_resolver)
        message = _message("Netflix: Your sign-in code", "Your code is 483920.")

        outcome = await resolver.resolve_final(message, _context())

        assert outcome == Code(value="483920")
        page_resolver.resolve_from_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_direct_rule_never_contacts_link(self):
        page_resolver = _page_resolver(Code(value="1111"))
        resolver = CodeResolver(page_resolver)
        message = _message("Your sign-in code", f"Open {VERIFY_URL}")

        outcome = await resolver.resolve_final(message, _context())

        assert outcome == NotFound()
        page_resolver.resolve_from_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_authenticated_rule_passes_credentials(self):
        page_resolver = _page_resolver(Code(value="719204"))
        resolver = CodeResolver(page_resolver)
        message = _message("Your temporary access code", f"Get code: {VERIFY_URL}")

        outcome = await resolver.resolve_final(message, _context())

        assert outcome == Code(value="719204")
        page_resolver.resolve_from_url.assert_awaited_once_with(VERIFY_URL, CREDENTIALS)

    @pytest.mark.asyncio
    async def test_authenticated_rule_without_credentials_reads_anonymously(self):
        page_resolver = _page_resolver(Code(value="719204"))
        resolver = CodeResolver(page_resolver)
        message = _message("Your temporary access code", f"Get code: {VERIFY_URL}")

        await resolver.resolve_final(message, _context(credentials=None))

        page_resolver.resolve_from_url.assert_awaited_once_with(VERIFY_URL, None)

    @pytest.mark.asyncio
    async def test_regex_fallback_rule_never_logs_in(self):
        page_resolver = _page_resolver(Code(value="8080"))
        resolver = CodeResolver(page_resolver)
        message = _message("Update your Netflix household", f"Confirm: {VERIFY_URL}")

        outcome = await resolver.resolve_final(message, _context())

        assert outcome == Code(value="8080")
        page_resolver.resolve_from_url.assert_awaited_once_with(VERIFY_URL, None)

    @pytest.mark.asyncio
    async def test_failed_page_does_not_fall_back_to_body_digits(self):
        """Once a link is followed its answer is final."""
        page_resolver = _page_resolver(NotFound())
        resolver = CodeResolver(page_resolver)
        message = _message(
            "Your temporary access code",
            f"Request 2026-10-18, ref 5566. Get code: {VERIFY_URL}",
        )

        outcome = await resolver.resolve_final(message, _context())

        assert outcome == NotFound()
        page_resolver.resolve_from_url.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_link_without_page_resolver_is_not_found(self):
        resolver = CodeResolver()
        message = _message("Your temporary access code", f"Get code: {VERIFY_URL}")

        assert await resolver.resolve_final(message, _context()) == NotFound()
