"""
Process-scoped application context.

All long-lived collaborators (mailbox, resolvers, session store, WhatsApp
channel) are built once from Settings and stored on ``app.state.context``.
Routes receive them through the get_context dependency, which tests
replace with ``app.dependency_overrides``.
"""

import logging
from dataclasses import dataclass

from fastapi import Request

from codebot.config import Settings, get_settings
from codebot.models.resolution import ResolutionContext
from codebot.services.browser import PlaywrightPageFetcher
from codebot.services.code_resolver import CodeResolver
from codebot.services.mailbox import ImapMailbox
from codebot.services.messaging import (
    ChannelMonitor,
    DeliveryDispatcher,
    WhatsAppChannel,
    WhatsAppGateway,
)
from codebot.services.page_resolver import CodeTarget, SecondaryPageResolver
from codebot.services.relay import CodeRelay
from codebot.services.session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    resolution: ResolutionContext
    channel: WhatsAppChannel
    monitor: ChannelMonitor
    relay: CodeRelay

    async def start(self) -> None:
        self.monitor.start()

    async def close(self) -> None:
        await self.monitor.stop()
        await self.channel.gateway.aclose()


def build_context(settings: Settings) -> AppContext:
    resolution = settings.resolution_context()

    page_resolver = SecondaryPageResolver(
        fetcher=PlaywrightPageFetcher(
            headless=settings.browser_headless,
            timeout_seconds=settings.page_timeout_seconds,
        ),
        sessions=SessionStore(settings.session_dir),
        code_target=CodeTarget(settings.code_target_selector),
        timeout_seconds=settings.resolution_timeout_seconds,
    )

    channel = WhatsAppChannel(
        WhatsAppGateway(
            base_url=settings.whatsapp_gateway_url,
            session=settings.whatsapp_session,
            api_key=settings.whatsapp_gateway_api_key,
        )
    )

    relay = CodeRelay(
        mailbox=ImapMailbox(
            host=settings.email_host,
            port=settings.email_port,
            user=settings.email_user or "",
            password=settings.email_password or "",
        ),
        resolver=CodeResolver(page_resolver),
        dispatcher=DeliveryDispatcher(channel, settings.whatsapp_recipients),
        context=resolution,
        sender_filter=settings.email_sender_filter,
        subject_filters=settings.email_subject_filters,
    )

    return AppContext(
        settings=settings,
        resolution=resolution,
        channel=channel,
        monitor=ChannelMonitor(channel, settings.channel_poll_seconds),
        relay=relay,
    )


def get_context(request: Request) -> AppContext:
    """Return the app's context, building it on first use."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        context = build_context(get_settings())
        request.app.state.context = context
    return context
