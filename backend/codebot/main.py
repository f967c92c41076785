"""
Code Bot API
FastAPI service that reads one-time sign-in codes from email and relays them to WhatsApp.
"""

import logging
import os
import time
from datetime import datetime, timezone
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from codebot.config import get_settings, validate_settings
from codebot.context import build_context
from codebot.routers import codes, whatsapp

# Configure logging to output to console
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
# httpx logs every gateway poll at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"
DEFAULT_CORS_ORIGIN = "http://localhost:3000"

_started_at = time.monotonic()


def get_cors_origins() -> List[str]:
    """
    Allowed CORS origins: the local dashboard plus anything listed in the
    comma-separated CORS_ORIGINS variable, first occurrence kept.
    """
    extra = os.getenv("CORS_ORIGINS", "").split(",")
    origins = [DEFAULT_CORS_ORIGIN] + [o.strip() for o in extra if o.strip()]
    return list(dict.fromkeys(origins))


app = FastAPI(
    title="Code Bot API",
    description="Fetch one-time sign-in codes from email and relay them to WhatsApp",
    version=APP_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(codes.router, tags=["codes"])
app.include_router(whatsapp.router, tags=["whatsapp"])


@app.on_event("startup")
async def startup() -> None:
    """
    Validate configuration, build the application context and start watching
    the WhatsApp channel.

    Missing required variables are logged as errors; the API still starts so
    /health and /status stay reachable while the .env file is fixed.
    """
    missing = validate_settings()
    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        logger.error("Please check your .env file")

    settings = get_settings()
    if getattr(app.state, "context", None) is None:
        app.state.context = build_context(settings)
    await app.state.context.start()

    logger.info(f"Code Bot running on http://localhost:{os.getenv('HOST_PORT', '8000')}")
    logger.info(f"Email: {settings.email_user}")
    logger.info(f"WhatsApp recipients: {len(settings.whatsapp_recipients)}")


@app.on_event("shutdown")
async def shutdown() -> None:
    logger.info("Shutting down gracefully...")
    context = getattr(app.state, "context", None)
    if context is not None:
        await context.close()
    logger.info("Server closed")


@app.get("/")
async def root():
    return {"message": "Code Bot API", "version": APP_VERSION}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _started_at, 3),
    }
