"""Persistence for the Strava AuthSession.

The sync service only depends on the ``SessionRepository`` protocol; the
file repository keeps tokens encrypted at rest.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol

from loguru import logger
from pydantic import ValidationError

from nudge.core.encryption import EncryptionError, TokenCipher
from nudge.integrations.strava.schemas import AuthSession


class SessionRepository(Protocol):
    def load(self) -> AuthSession | None: ...

    def save(self, session: AuthSession) -> None: ...

    def clear(self) -> None: ...


class InMemorySessionRepository:
    def __init__(self, session: AuthSession | None = None) -> None:
        self._session = session

    def load(self) -> AuthSession | None:
        return self._session

    def save(self, session: AuthSession) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileSessionRepository:
    """Stores the session as JSON with access and refresh tokens encrypted."""

    def __init__(self, path: str | Path, cipher: TokenCipher) -> None:
        self._path = Path(path).expanduser()
        self._cipher = cipher

    def load(self) -> AuthSession | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text())
            data["access_token"] = self._cipher.decrypt(data["access_token"])
            if data.get("refresh_token"):
                data["refresh_token"] = self._cipher.decrypt(data["refresh_token"])
            return AuthSession.model_validate(data)
        except EncryptionError as e:
            logger.warning(f"[SESSION] Stored session cannot be decrypted, ignoring it: {e!s}")
            return None
        except (ValueError, KeyError, ValidationError) as e:
            logger.warning(f"[SESSION] Stored session at {self._path} is malformed, ignoring it: {e!s}")
            return None

    def save(self, session: AuthSession) -> None:
        data = session.model_dump()
        data["access_token"] = self._cipher.encrypt(session.access_token)
        if session.refresh_token:
            data["refresh_token"] = self._cipher.encrypt(session.refresh_token)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2))
        self._path.chmod(0o600)
        logger.debug(f"[SESSION] Saved session for athlete_id={session.athlete_id}")

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
        logger.debug("[SESSION] Cleared stored session")
