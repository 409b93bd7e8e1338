"""Portal credential storage.

Environment variables win over the JSON file so deployments can inject
secrets without touching disk.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from . import config
from .errors import ValidationError
from .logging_utils import _run_event
from .models import Credentials
from .utils import load_json_file, save_json_file

USERNAME_ENV = "EXPEDIENTES_PORTAL_USERNAME"
PASSWORD_ENV = "EXPEDIENTES_PORTAL_PASSWORD"


class CredentialsStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path or config.CREDENTIALS_FILE)

    def get_credentials(self) -> Optional[Credentials]:
        username = os.getenv(USERNAME_ENV, "").strip()
        password = os.getenv(PASSWORD_ENV, "")
        if username and password:
            return Credentials(username=username, password=password)

        payload = load_json_file(self.path)
        if not isinstance(payload, dict):
            return None
        credentials = Credentials(
            username=str(payload.get("username") or "").strip(),
            password=str(payload.get("password") or ""),
        )
        return credentials if credentials.is_complete() else None

    def save_credentials(self, username: str, password: str) -> Credentials:
        credentials = Credentials(username=(username or "").strip(), password=password or "")
        if not credentials.username:
            raise ValidationError("Username is required", field="username")
        if not credentials.password:
            raise ValidationError("Password is required", field="password")
        save_json_file(
            self.path,
            {"username": credentials.username, "password": credentials.password},
        )
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            pass
        _run_event("credentials", step="saved", username=credentials.username)
        return credentials

    def is_configured(self) -> bool:
        return self.get_credentials() is not None


__all__ = ["CredentialsStore", "USERNAME_ENV", "PASSWORD_ENV"]
