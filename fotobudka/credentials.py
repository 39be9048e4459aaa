"""File-backed storage for session credentials.

Stands in for the platform keychain: a small JSON document holding the
external identity, backend user id and bearer token.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from pathlib import Path

from fotobudka.models import SessionCredentials

logger = logging.getLogger(__name__)


class CredentialStore:
    """Persist SessionCredentials to a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._credentials = self._load()

    def _load(self) -> SessionCredentials:
        if not self.path.exists():
            return SessionCredentials()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable credentials file %s: %s", self.path, exc)
            return SessionCredentials()
        if not isinstance(data, dict):
            return SessionCredentials()
        return SessionCredentials(
            external_id=data.get("external_id"),
            user_id=data.get("user_id"),
            access_token=data.get("access_token"),
        )

    def _save(self, credentials: SessionCredentials) -> None:
        """Write ``credentials`` atomically, then adopt them as current."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "external_id": credentials.external_id,
                    "user_id": credentials.user_id,
                    "access_token": credentials.access_token,
                },
                f,
                indent=2,
            )
        os.replace(tmp, self.path)
        self._credentials = credentials

    @property
    def credentials(self) -> SessionCredentials:
        return self._credentials

    def get_token(self) -> str | None:
        return self._credentials.access_token or None

    def get_user_id(self) -> str | None:
        return self._credentials.user_id or None

    def save_token(self, token: str) -> None:
        self._save(dataclasses.replace(self._credentials, access_token=token))

    def save_user_id(self, user_id: str, external_id: str | None = None) -> None:
        updated = dataclasses.replace(self._credentials, user_id=user_id)
        if external_id is not None:
            updated.external_id = external_id
        self._save(updated)

    def clear(self) -> None:
        self._credentials = SessionCredentials()
        if self.path.exists():
            self.path.unlink()
