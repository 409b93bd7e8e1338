"""Exception hierarchy shared by the automation core and its callers."""
from __future__ import annotations

from typing import Any, Optional

from .error_codes import ErrorCode


class AppError(Exception):
    """Base error carrying a stable ``code`` and caller-facing context."""

    code: str = ErrorCode.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.cause = cause
        self.context = {k: v for k, v in context.items() if v is not None}

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.message,
            "code": self.code,
            **self.context,
        }
        if self.cause is not None:
            payload["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return payload

    def __str__(self) -> str:
        return self.message


class ValidationError(AppError):
    code = ErrorCode.VALIDATION

    def __init__(self, message: str, *, field: Optional[str] = None, value: Any = None, **kwargs: Any) -> None:
        super().__init__(message, field=field, value=None if value is None else str(value), **kwargs)


class LaunchError(AppError):
    code = ErrorCode.LAUNCH_FAILED


class BrowserNotFoundError(LaunchError):
    code = ErrorCode.BROWSER_NOT_FOUND


class LoginError(AppError):
    code = ErrorCode.LOGIN_FAILED


class CredentialsNotConfiguredError(AppError):
    code = ErrorCode.CREDENTIALS_NOT_CONFIGURED


class AlreadyRunningError(AppError):
    code = ErrorCode.ALREADY_RUNNING


class LicenseError(AppError):
    code = ErrorCode.LICENSE_INVALID


class NetworkError(AppError):
    code = ErrorCode.NETWORK

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, status_code=status_code, url=url, **kwargs)
        self.status_code = status_code


class AutomationError(AppError):
    """A browser step failed for one case record."""

    code = ErrorCode.AUTOMATION

    def __init__(
        self,
        message: str,
        *,
        case_id: Optional[str] = None,
        phase: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, case_id=case_id, phase=phase, **kwargs)
        self.case_id = case_id
        self.phase = phase


class LiberationError(AutomationError):
    code = ErrorCode.LIBERATION_FAILED


__all__ = [
    "AppError",
    "ValidationError",
    "LaunchError",
    "BrowserNotFoundError",
    "LoginError",
    "CredentialsNotConfiguredError",
    "AlreadyRunningError",
    "LicenseError",
    "NetworkError",
    "AutomationError",
    "LiberationError",
]
