"""
Code resolver: turns a fetched email into a one-time code.

Dispatch is driven by ResolutionContext.subject_rules, evaluated in order
(first match wins, no fallthrough once a rule is selected):

  DIRECT_REGEX_ONLY
      First 4-8 digit run in the body. Links are never followed, even if the
      body contains one.

  LINK_THEN_AUTHENTICATED_EXTRACTION / LINK_THEN_REGEX_FALLBACK
      First verification link in the body (path contains a marker token).
      No link → digit scan of the body. Link → the secondary page resolver's
      answer is final; a failed page visit is NotFound and the body is NOT
      scanned again. The authenticated variant passes the configured
      credentials; the other reads the page without logging in.

  no matching rule
      Plain digit scan of the body.

resolve() may return PendingUrl; resolve_final() always finishes the job and
only returns Code or NotFound. Neither raises.
"""

import logging
from typing import Optional

from codebot.models.message import InboundMessage
from codebot.models.outcome import (
    Code,
    ExtractionOutcome,
    FinalOutcome,
    NotFound,
    PendingUrl,
)
from codebot.models.resolution import ResolutionContext, ResolutionStrategy
from codebot.services.code_patterns import find_code, find_verification_link
from codebot.services.page_resolver import SecondaryPageResolver

logger = logging.getLogger(__name__)

_LINK_STRATEGIES = (
    ResolutionStrategy.LINK_THEN_AUTHENTICATED_EXTRACTION,
    ResolutionStrategy.LINK_THEN_REGEX_FALLBACK,
)


def _scan_body(body: str) -> ExtractionOutcome:
    code = find_code(body)
    return Code(value=code) if code else NotFound()


def resolve(message: InboundMessage, context: ResolutionContext) -> ExtractionOutcome:
    """First-stage resolution from the message alone."""
    try:
        rule = context.rule_for(message.subject)
        if rule is None or rule.strategy not in _LINK_STRATEGIES:
            return _scan_body(message.body)

        url = find_verification_link(message.body, context.link_markers)
        if url is None:
            return _scan_body(message.body)
        return PendingUrl(url=url)
    except Exception as exc:
        logger.error(f"Error resolving code from message: {exc}")
        return NotFound()


class CodeResolver:
    """Runs both resolution stages for the orchestration layer."""

    def __init__(self, page_resolver: Optional[SecondaryPageResolver] = None):
        self.page_resolver = page_resolver

    async def resolve_final(
        self, message: InboundMessage, context: ResolutionContext
    ) -> FinalOutcome:
        outcome = resolve(message, context)
        if not isinstance(outcome, PendingUrl):
            return outcome

        if self.page_resolver is None:
            logger.warning("Verification link found but no page resolver is configured")
            return NotFound()

        rule = context.rule_for(message.subject)
        credentials = None
        if rule is not None and rule.strategy is ResolutionStrategy.LINK_THEN_AUTHENTICATED_EXTRACTION:
            credentials = context.credentials
            if credentials is None:
                logger.warning("Site credentials not provided, skipping authentication")

        logger.info("Code not in email body, resolving verification link")
        return await self.page_resolver.resolve_from_url(outcome.url, credentials)
