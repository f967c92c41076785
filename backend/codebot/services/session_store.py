"""
Persisted authenticated browser sessions.

A session is the browser storage state (cookies) captured right after a
successful login, keyed by account identity. It is:

  - loaded lazily on the first secondary resolution that needs it,
  - written only after a successful login (a failed write is logged and the
    session is kept in memory),
  - discarded in memory when a validity check fails (the file on disk is left
    alone and overwritten by the next successful login).

lock_for() hands out one asyncio.Lock per account. Callers hold it around the
whole "check validity, maybe log in, save" sequence so concurrent requests
never run two login flows for the same account.
"""

import asyncio
import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class AuthenticatedSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: str
    storage_state: dict
    saved_at: datetime


def _account_key(account: str) -> str:
    return account.strip().casefold()


class SessionStore:
    """
    In-memory cache of AuthenticatedSession objects, optionally backed by a
    directory of JSON files (one per account).
    """

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory) if directory else None
        self._sessions: dict[str, AuthenticatedSession] = {}
        self._discarded: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, account: str) -> asyncio.Lock:
        key = _account_key(account)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def path_for(self, account: str) -> Optional[Path]:
        if self.directory is None:
            return None
        digest = hashlib.sha256(_account_key(account).encode()).hexdigest()[:16]
        return self.directory / f"session-{digest}.json"

    async def load(self, account: str) -> Optional[AuthenticatedSession]:
        """Return the cached session, reading it from disk on first use."""
        key = _account_key(account)
        if key in self._sessions:
            return self._sessions[key]
        if key in self._discarded:
            return None

        path = self.path_for(account)
        if path is None:
            return None
        session = await asyncio.to_thread(self._read, path)
        if session is not None:
            self._sessions[key] = session
            logger.info(f"Loaded stored browser session saved at {session.saved_at.isoformat()}")
        return session

    async def save(self, account: str, storage_state: dict) -> AuthenticatedSession:
        key = _account_key(account)
        session = AuthenticatedSession(
            account=key,
            storage_state=storage_state,
            saved_at=datetime.now(timezone.utc),
        )
        self._sessions[key] = session
        self._discarded.discard(key)

        path = self.path_for(account)
        if path is not None:
            try:
                await asyncio.to_thread(self._write, path, session)
            except OSError as exc:
                # the in-memory copy still serves this process
                logger.warning(f"Could not persist browser session to {path}: {exc}")
            else:
                logger.info(f"Browser session persisted to {path}")
        return session

    def discard(self, account: str) -> None:
        key = _account_key(account)
        self._sessions.pop(key, None)
        self._discarded.add(key)

    @staticmethod
    def _read(path: Path) -> Optional[AuthenticatedSession]:
        if not path.exists():
            return None
        try:
            return AuthenticatedSession.model_validate_json(path.read_text())
        except (OSError, ValidationError, json.JSONDecodeError) as exc:
            logger.warning(f"Ignoring unreadable session file {path}: {exc}")
            return None

    @staticmethod
    def _write(path: Path, session: AuthenticatedSession) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(session.model_dump_json())
        os.replace(tmp, path)
