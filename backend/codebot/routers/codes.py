"""
Code retrieval endpoints.

Endpoints:
  GET  /fetch-latest-code     — newest matching email → code
  POST /relay-latest-code     — fetch the code and send it to WhatsApp in one call

Lookback window
---------------
Both endpoints accept ?days=, ?hours= or ?minutes= (first valid positive value
wins, in that order). Without any, the configured LOOKBACK_MINUTES is used.

Status codes:
  400  no WhatsApp recipient configured
  404  no matching email / no code in the latest email
  502  WhatsApp gateway rejected the send (relay only)
  503  WhatsApp channel not connected (relay only)
  500  anything unexpected
"""

import logging
import math
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from codebot.context import AppContext, get_context
from codebot.errors import (
    ChannelNotReady,
    DeliveryFailed,
    NoCodeFound,
    NoMatchingMessage,
    RecipientNotConfigured,
)
from codebot.models.api import CodeResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _positive(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) and value > 0 else None


def parse_lookback(
    days: Optional[str] = None,
    hours: Optional[str] = None,
    minutes: Optional[str] = None,
) -> Optional[timedelta]:
    """Return the requested lookback window, or None to use the configured default."""
    if (value := _positive(days)) is not None:
        return timedelta(days=value)
    if (value := _positive(hours)) is not None:
        return timedelta(hours=value)
    if (value := _positive(minutes)) is not None:
        return timedelta(minutes=value)
    return None


def _require_recipient(context: AppContext) -> None:
    if not context.relay.dispatcher.recipients:
        raise HTTPException(status_code=400, detail="WHATSAPP_RECIPIENT_ID not set in .env")


@router.get("/fetch-latest-code", response_model=CodeResponse)
async def fetch_latest_code(
    days: Optional[str] = Query(None),
    hours: Optional[str] = Query(None),
    minutes: Optional[str] = Query(None),
    context: AppContext = Depends(get_context),
):
    _require_recipient(context)
    lookback = parse_lookback(days, hours, minutes)

    try:
        code = await context.relay.fetch_latest_code(lookback)
    except (NoMatchingMessage, NoCodeFound) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except Exception as exc:
        logger.exception(f"API Error: {exc}")
        raise HTTPException(status_code=500, detail="Internal server error.")

    return CodeResponse(code=code)


@router.post("/relay-latest-code", response_model=CodeResponse)
async def relay_latest_code(
    days: Optional[str] = Query(None),
    hours: Optional[str] = Query(None),
    minutes: Optional[str] = Query(None),
    context: AppContext = Depends(get_context),
):
    """Fetch the latest code and deliver it to every configured recipient."""
    _require_recipient(context)
    lookback = parse_lookback(days, hours, minutes)

    try:
        code = await context.relay.relay_latest_code(lookback)
    except (NoMatchingMessage, NoCodeFound) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RecipientNotConfigured as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ChannelNotReady as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except DeliveryFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    except Exception as exc:
        logger.exception(f"API Error: {exc}")
        raise HTTPException(status_code=500, detail="Internal server error.")

    return CodeResponse(code=code, message="Code found and sent!", sent=True)
