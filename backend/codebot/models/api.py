"""
Pydantic models for the HTTP API.

Models:
  CodeResponse        — GET /fetch-latest-code, POST /relay-latest-code
  SendCodeRequest     — request body for POST /send-to-whatsapp
  SendCodeResponse    — response body for POST /send-to-whatsapp
  StatusResponse      — GET /status
  ChatListResponse    — GET /list-groups
  GatewayEvent        — POST /webhooks/whatsapp
"""

from typing import Any, Optional

from pydantic import BaseModel

from codebot.services.messaging import ChannelState


class CodeResponse(BaseModel):
    success: bool = True
    message: str = "Code found!"
    code: str
    sent: bool = False


class SendCodeRequest(BaseModel):
    # Validated by the route: anything but a digit string is a 400. Numbers are
    # not coerced to strings.
    code: Any = None


class SendCodeResponse(BaseModel):
    success: bool = True
    message: str = "Sent to WhatsApp!"
    recipients: int


class StatusResponse(BaseModel):
    ready: bool
    state: ChannelState
    recipient: str
    # Raw pairing string; rendering it as a QR image is left to the client.
    qr_code: Optional[str] = None


class ChatListResponse(BaseModel):
    success: bool = True
    groups: list[dict[str, Any]] = []
    contacts: list[dict[str, Any]] = []


class GatewayEvent(BaseModel):
    """Subset of the gateway webhook JSON; unknown fields are ignored."""

    model_config = {"extra": "ignore"}

    event: str
    session: Optional[str] = None
    payload: dict[str, Any] = {}
