"""HTTP client for the license server's validation endpoints."""

from __future__ import annotations

import json
import platform
import socket
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests

from . import config
from .errors import LicenseError, NetworkError
from .logging_utils import _run_event
from .utils import log_line


@dataclass(frozen=True)
class LicenseStatus:
    valid: bool
    expires_at: Optional[str] = None
    message: str = ""

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.expires_at:
            return False
        try:
            expires = datetime.fromisoformat(self.expires_at.replace("Z", "+00:00"))
        except ValueError:
            return False
        now = now or datetime.now(expires.tzinfo)
        return expires <= now


def _device_info() -> Dict[str, Any]:
    return {
        "platform": platform.system().lower(),
        "hostname": socket.gethostname(),
        "arch": platform.machine(),
        "os_release": platform.release(),
        "python_version": platform.python_version(),
        "date": datetime.now().isoformat(),
    }


class LicenseClient:
    """Validate license tokens against the license server.

    Connection errors and 5xx responses are retried ``attempts`` times with
    a fixed delay; 4xx responses are answers, not failures.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[int] = None,
        attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = (base_url or config.LICENSE_API_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(config.COMMON_HEADERS)
        self.timeout = timeout or config.LICENSE_API_TIMEOUT_SECONDS
        self.attempts = max(1, attempts if attempts is not None else config.LICENSE_API_ATTEMPTS)
        self.retry_delay = (
            retry_delay if retry_delay is not None else config.LICENSE_API_RETRY_DELAY_SECONDS
        )
        self._sleep = sleep

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        last_error: Optional[NetworkError] = None
        for attempt in range(1, self.attempts + 1):
            try:
                response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as exc:
                last_error = NetworkError(
                    f"License server unreachable: {exc}", url=url, cause=exc
                )
            else:
                if response.status_code < 500:
                    return response
                last_error = NetworkError(
                    f"License server error HTTP {response.status_code}",
                    status_code=response.status_code,
                    url=url,
                )
            _run_event(
                "license",
                step="request_failed",
                path=path,
                attempt=attempt,
                attempts=self.attempts,
                error=str(last_error),
            )
            if attempt < self.attempts:
                self._sleep(self.retry_delay)
        assert last_error is not None
        raise last_error

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def validate(self, token: str) -> LicenseStatus:
        """POST the token with a machine id and device info to ``/api/validate``."""

        if not token:
            raise LicenseError("License token is required")
        body = {
            "token": token,
            "machineId": f"machine-{uuid.uuid4().hex[:12]}",
            "deviceInfo": json.dumps(_device_info()),
        }
        response = self._request("POST", "/api/validate", json=body)
        payload = self._json(response)
        if not response.ok:
            message = payload.get("message") or payload.get("error") or "License validation failed"
            return LicenseStatus(valid=False, message=str(message))
        return LicenseStatus(
            valid=bool(payload.get("valid")),
            expires_at=payload.get("expires_at") or payload.get("expiresAt"),
            message=str(payload.get("message") or ""),
        )

    def check_validity(self, token: str) -> LicenseStatus:
        """GET ``/api/check-validity/<token>``."""

        if not token:
            raise LicenseError("License token is required")
        response = self._request("GET", f"/api/check-validity/{token}")
        payload = self._json(response)
        if not response.ok:
            message = payload.get("message") or payload.get("error") or "License validity check failed"
            return LicenseStatus(valid=False, message=str(message))
        return LicenseStatus(
            valid=bool(payload.get("valid")),
            expires_at=payload.get("expiresAt") or payload.get("expires_at"),
            message=str(payload.get("message") or ""),
        )

    def server_available(self) -> bool:
        try:
            return self._request("GET", "/api/health").ok
        except NetworkError:
            return False


def license_gate(token: Optional[str] = None, *, client: Optional[LicenseClient] = None) -> bool:
    """Return ``True`` when a run may start.

    Always ``True`` when licensing is disabled. Otherwise the token must be
    reported valid and unexpired by ``check_validity``.
    """

    if not config.LICENSE_REQUIRED:
        return True
    token = token or config.LICENSE_TOKEN
    if not token:
        log_line("[LICENSE] Licensing is enabled but no token is configured.")
        return False
    client = client or LicenseClient()
    try:
        status = client.check_validity(token)
    except (NetworkError, LicenseError) as exc:
        log_line(f"[LICENSE] Validity check failed: {exc}")
        return False
    allowed = status.valid and not status.is_expired()
    _run_event("license", step="gate", valid=status.valid, expires_at=status.expires_at, allowed=allowed)
    return allowed


__all__ = ["LicenseClient", "LicenseStatus", "license_gate"]
