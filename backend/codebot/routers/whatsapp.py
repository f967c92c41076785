"""
WhatsApp channel endpoints.

Endpoints:
  GET  /status              — channel readiness, state and pairing QR value
  POST /send-to-whatsapp    — deliver a caller-supplied code
  GET  /list-groups         — groups and contacts visible to the paired account
  POST /webhooks/whatsapp   — gateway session events (auth: X-Webhook-Secret)
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from codebot.context import AppContext, get_context
from codebot.errors import (
    ChannelNotReady,
    DeliveryFailed,
    InvalidCodeFormat,
    RecipientNotConfigured,
)
from codebot.models.api import (
    ChatListResponse,
    GatewayEvent,
    SendCodeRequest,
    SendCodeResponse,
    StatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(None),
    context: AppContext = Depends(get_context),
) -> None:
    """
    Verify that a gateway webhook carries the configured shared secret.

    Raises 401 if the secret is missing, unconfigured, or does not match.
    """
    expected = context.settings.whatsapp_webhook_secret or ""
    if not expected:
        logger.warning(
            "No webhook secret configured (WHATSAPP_WEBHOOK_SECRET) — "
            "all gateway webhook requests will be rejected"
        )
        raise HTTPException(status_code=401, detail="Webhook secret not configured")

    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


@router.get("/status", response_model=StatusResponse)
async def status(context: AppContext = Depends(get_context)):
    state = context.channel.state
    return StatusResponse(
        ready=state.ready,
        state=state.state,
        recipient="Configured" if context.relay.dispatcher.recipients else "Not configured",
        qr_code=state.qr_code,
    )


@router.post("/send-to-whatsapp", response_model=SendCodeResponse)
async def send_to_whatsapp(
    body: SendCodeRequest,
    context: AppContext = Depends(get_context),
):
    if not context.channel.ready:
        raise HTTPException(
            status_code=503,
            detail="WhatsApp not ready. Scan the pairing QR code.",
        )
    if body.code is None or body.code == "":
        raise HTTPException(status_code=400, detail="No code provided")
    if not isinstance(body.code, str):
        raise HTTPException(status_code=400, detail="Code must be a string of 4 to 8 digits")

    try:
        delivered = await context.relay.send_code(body.code)
    except (InvalidCodeFormat, RecipientNotConfigured) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ChannelNotReady as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except DeliveryFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    except Exception as exc:
        logger.exception(f"Send Error: {exc}")
        raise HTTPException(status_code=500, detail="Failed to send to WhatsApp.")

    return SendCodeResponse(recipients=len(delivered))


@router.get("/list-groups", response_model=ChatListResponse)
async def list_groups(context: AppContext = Depends(get_context)):
    try:
        chats = await context.channel.list_chats()
    except ChannelNotReady:
        raise HTTPException(status_code=503, detail="WhatsApp not ready.")
    except DeliveryFailed as exc:
        logger.error(f"Error listing groups: {exc}")
        raise HTTPException(status_code=502, detail="Failed to list groups")

    logger.info("WhatsApp groups and contacts listed")
    return ChatListResponse(groups=chats["groups"], contacts=chats["contacts"])


@router.post("/webhooks/whatsapp", dependencies=[Depends(_verify_webhook_secret)])
async def whatsapp_webhook(
    event: GatewayEvent,
    context: AppContext = Depends(get_context),
):
    """
    Receive gateway events. Always 200 so the gateway does not retry; a
    failure to fetch the pairing QR is logged and left to the next poll.
    """
    try:
        await context.channel.handle_event(event.model_dump())
    except Exception as exc:
        logger.error(f"Failed to apply WhatsApp gateway event {event.event!r}: {exc}")
    return {"received": True, "state": context.channel.state.state.value}
