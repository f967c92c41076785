"""
Messaging channel: WhatsApp delivery through an HTTP gateway.

The gateway (a WAHA-compatible WhatsApp HTTP API) owns the actual WhatsApp Web
session; this module only observes it and sends text through it.

Channel lifecycle is an explicit state machine:

    DISCONNECTED ──qr──▶ AWAITING_PAIRING ──ready──▶ CONNECTED
         ▲                     │                         │
         └──── disconnected / auth_failure ◀─────────────┘

Transitions are driven by collaborator callbacks (on_qr, on_ready,
on_disconnected, on_auth_failure), which are fed either by the periodic
ChannelMonitor poll or by gateway webhook events. Everything else only asks
"is the channel ready?".

Gateway session status → callback:
  WORKING       → on_ready
  SCAN_QR_CODE  → on_qr (raw QR value fetched from the gateway)
  STARTING      → no transition
  STOPPED       → on_disconnected
  FAILED        → on_auth_failure
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Optional, Sequence

import httpx

from codebot.errors import ChannelNotReady, DeliveryFailed, RecipientNotConfigured

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"


class ChannelStateMachine:
    """Thread-safe holder of the current channel state and pairing QR."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = ChannelState.DISCONNECTED
        self._qr_code: Optional[str] = None
        self._last_reason: Optional[str] = None

    @property
    def state(self) -> ChannelState:
        with self._lock:
            return self._state

    @property
    def ready(self) -> bool:
        return self.state is ChannelState.CONNECTED

    @property
    def qr_code(self) -> Optional[str]:
        with self._lock:
            return self._qr_code

    @property
    def last_reason(self) -> Optional[str]:
        with self._lock:
            return self._last_reason

    def _transition(
        self,
        new_state: ChannelState,
        qr_code: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        with self._lock:
            old_state = self._state
            self._state = new_state
            self._qr_code = qr_code
            if reason is not None:
                self._last_reason = reason
        if old_state is not new_state:
            logger.info(f"WhatsApp channel {old_state.value} -> {new_state.value}")

    def on_qr(self, qr_code: Optional[str]) -> None:
        if qr_code and qr_code != self.qr_code:
            logger.info("QR code generated - scan with WhatsApp")
        self._transition(ChannelState.AWAITING_PAIRING, qr_code=qr_code)

    def on_ready(self) -> None:
        self._transition(ChannelState.CONNECTED, reason=None)

    def on_disconnected(self, reason: str = "") -> None:
        if self.state is not ChannelState.DISCONNECTED:
            logger.error(f"WhatsApp disconnected: {reason}")
        self._transition(ChannelState.DISCONNECTED, reason=reason)

    def on_auth_failure(self, message: str = "") -> None:
        logger.error(f"WhatsApp authentication failed: {message}")
        self._transition(ChannelState.DISCONNECTED, reason=message)


class WhatsAppGateway:
    """Thin async client for the WhatsApp HTTP gateway."""

    def __init__(
        self,
        base_url: str,
        session: str = "default",
        api_key: Optional[str] = None,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session
        headers = {"X-Api-Key": api_key} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def session_status(self) -> str:
        response = await self._client.get(f"/api/sessions/{self.session}")
        response.raise_for_status()
        return str(response.json().get("status", "")).upper()

    async def qr_value(self) -> Optional[str]:
        response = await self._client.get(
            f"/api/{self.session}/auth/qr", params={"format": "raw"}
        )
        response.raise_for_status()
        return response.json().get("value")

    async def send_text(self, chat_id: str, text: str) -> dict:
        response = await self._client.post(
            "/api/sendText",
            json={"session": self.session, "chatId": chat_id, "text": text},
        )
        response.raise_for_status()
        return response.json() if response.content else {}

    async def list_chats(self) -> list[dict]:
        response = await self._client.get(f"/api/{self.session}/chats")
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


def _chat_id(chat: dict) -> str:
    raw = chat.get("id")
    if isinstance(raw, dict):
        return raw.get("_serialized") or ""
    return str(raw or "")


class WhatsAppChannel:
    def __init__(self, gateway: WhatsAppGateway, state: Optional[ChannelStateMachine] = None):
        self.gateway = gateway
        self.state = state or ChannelStateMachine()

    @property
    def ready(self) -> bool:
        return self.state.ready

    async def apply_status(self, status: str, qr_code: Optional[str] = None) -> None:
        """Translate a gateway session status into a state machine callback."""
        status = (status or "").upper()
        if status == "WORKING":
            self.state.on_ready()
        elif status == "SCAN_QR_CODE":
            if qr_code is None:
                qr_code = await self.gateway.qr_value()
            self.state.on_qr(qr_code)
        elif status == "STOPPED":
            self.state.on_disconnected("session stopped")
        elif status == "FAILED":
            self.state.on_auth_failure("session failed")
        elif status == "STARTING":
            logger.info("WhatsApp loading")
        else:
            logger.warning(f"Unknown WhatsApp session status {status!r}")

    async def refresh(self) -> None:
        """Poll the gateway once and update the state machine."""
        try:
            await self.apply_status(await self.gateway.session_status())
        except httpx.HTTPError as exc:
            self.state.on_disconnected(f"gateway unreachable: {exc}")

    async def handle_event(self, event: dict) -> None:
        """Handle a gateway webhook event (only session.status is relevant)."""
        if event.get("event") != "session.status":
            return
        if event.get("session") not in (None, self.gateway.session):
            return
        payload = event.get("payload") or {}
        await self.apply_status(payload.get("status", ""), payload.get("qr"))

    async def send(self, recipient_id: str, text: str) -> None:
        if not self.ready:
            raise ChannelNotReady("WhatsApp not ready")
        try:
            await self.gateway.send_text(recipient_id, text)
        except httpx.HTTPError as exc:
            raise DeliveryFailed(f"Failed to send to {recipient_id}: {exc}") from exc

    async def list_chats(self) -> dict[str, list[dict[str, Any]]]:
        """Split the gateway chat list into groups and contacts."""
        if not self.ready:
            raise ChannelNotReady("WhatsApp not ready")
        try:
            chats = await self.gateway.list_chats()
        except httpx.HTTPError as exc:
            raise DeliveryFailed(f"Failed to list chats: {exc}") from exc

        groups, contacts = [], []
        for chat in chats:
            chat_id = _chat_id(chat)
            if chat.get("isGroup") or chat_id.endswith("@g.us"):
                participants = (chat.get("groupMetadata") or {}).get("participants") or []
                groups.append(
                    {"name": chat.get("name"), "id": chat_id, "participants": len(participants)}
                )
            else:
                contacts.append(
                    {
                        "name": chat.get("name") or chat.get("pushname") or "Unknown",
                        "id": chat_id,
                        "number": chat_id.split("@", 1)[0],
                    }
                )
        return {"groups": groups, "contacts": contacts}


class DeliveryDispatcher:
    """Sends one text to every configured recipient, gated on channel readiness."""

    def __init__(self, channel: WhatsAppChannel, recipients: Sequence[str]):
        self.channel = channel
        self.recipients = tuple(r for r in recipients if r)

    async def deliver(self, text: str) -> list[str]:
        if not self.recipients:
            raise RecipientNotConfigured("WHATSAPP_RECIPIENT_ID not set in .env")
        if not self.channel.ready:
            raise ChannelNotReady("WhatsApp not ready. Scan the pairing QR code.")

        delivered: list[str] = []
        failures: list[str] = []
        for recipient in self.recipients:
            try:
                await self.channel.send(recipient, text)
                delivered.append(recipient)
            except DeliveryFailed as exc:
                logger.error(f"Send Error: {exc}")
                failures.append(recipient)

        if failures:
            raise DeliveryFailed(
                f"Delivery failed for {len(failures)} of {len(self.recipients)} recipients"
            )
        return delivered


class ChannelMonitor:
    """Background task that polls the gateway so channel state stays current."""

    def __init__(self, channel: WhatsAppChannel, interval_seconds: float = 5.0):
        self.channel = channel
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.channel.refresh()
            except Exception as exc:
                logger.error(f"WhatsApp status poll failed: {exc}")
            await asyncio.sleep(self.interval_seconds)
