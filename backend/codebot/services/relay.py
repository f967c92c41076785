"""
Relay service: mailbox → resolver → messaging.

This is the orchestration layer the HTTP routes call. Unlike the resolution
core, it surfaces failures as exceptions from codebot.errors so the routes can
map them to status codes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol, Sequence

from codebot.errors import InvalidCodeFormat, NoCodeFound, NoMatchingMessage
from codebot.models.message import InboundMessage
from codebot.models.outcome import Code
from codebot.models.resolution import ResolutionContext
from codebot.services.code_patterns import is_valid_code
from codebot.services.code_resolver import CodeResolver
from codebot.services.messaging import DeliveryDispatcher

logger = logging.getLogger(__name__)

BOT_MESSAGE_TEMPLATE = "🤖 Netflix Code Bot:\n\n{code}"


class Mailbox(Protocol):
    async def fetch_latest(
        self, sender: Optional[str], subject_filters: Sequence[str], since: datetime
    ) -> Optional[InboundMessage]: ...


def format_code_message(code: str) -> str:
    return BOT_MESSAGE_TEMPLATE.format(code=code)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CodeRelay:
    def __init__(
        self,
        mailbox: Mailbox,
        resolver: CodeResolver,
        dispatcher: DeliveryDispatcher,
        context: ResolutionContext,
        sender_filter: Optional[str] = None,
        subject_filters: Sequence[str] = (),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.mailbox = mailbox
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.context = context
        self.sender_filter = sender_filter
        self.subject_filters = tuple(subject_filters)
        self.clock = clock

    async def fetch_latest_code(self, lookback: Optional[timedelta] = None) -> str:
        """
        Fetch the newest matching email and resolve its code.

        Raises:
            NoMatchingMessage: nothing matched inside the lookback window
            NoCodeFound: a message matched but no code could be resolved
        """
        window = lookback or self.context.lookback
        since = self.clock() - window

        message = await self.mailbox.fetch_latest(
            self.sender_filter, self.subject_filters, since
        )
        if message is None:
            raise NoMatchingMessage("No matching email found.")

        logger.info(f"Resolving code from email {message.subject!r}")
        outcome = await self.resolver.resolve_final(message, self.context)
        if not isinstance(outcome, Code):
            raise NoCodeFound("No code or relevant link found in the latest email.")

        logger.info(f"Code found: {outcome.value}")
        return outcome.value

    async def send_code(self, code: Optional[str]) -> list[str]:
        """
        Deliver a code to every configured recipient.

        Raises:
            InvalidCodeFormat: code is not 4-8 ASCII digits
            RecipientNotConfigured / ChannelNotReady / DeliveryFailed: from the dispatcher
        """
        code = (code or "").strip()
        if not is_valid_code(code):
            raise InvalidCodeFormat("Code must be 4 to 8 digits")

        delivered = await self.dispatcher.deliver(format_code_message(code))
        logger.info(f"Code sent to {len(delivered)} WhatsApp recipient(s)")
        return delivered

    async def relay_latest_code(self, lookback: Optional[timedelta] = None) -> str:
        code = await self.fetch_latest_code(lookback)
        await self.send_code(code)
        return code
