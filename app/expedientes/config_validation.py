from __future__ import annotations

from typing import Literal

from . import config
from .logging_utils import _run_event
from .utils import log_line

Entrypoint = Literal["ui", "cli", "tests"]


def _raise_config_error(message: str, *, entrypoint: Entrypoint, error: str) -> None:
    _run_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint})")
    raise ValueError(message)


def _clamp(field_name: str, value, adjusted, *, entrypoint: Entrypoint, reason: str) -> None:
    _run_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field_name,
        value=value,
        adjusted=adjusted,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {field_name} {reason}; clamping to {adjusted}.")
    setattr(config, field_name, adjusted)


def validate_runtime_config(entrypoint: Entrypoint) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Recoverable knobs (batch size, pacing, attempts) are clamped and logged.
    """

    if not config.PORTAL_BASE_URL.startswith(("http://", "https://")):
        _raise_config_error(
            "EXPEDIENTES_PORTAL_URL must be an http(s) URL.",
            entrypoint=entrypoint,
            error="portal_url_invalid",
        )

    if config.LICENSE_REQUIRED and not config.LICENSE_API_BASE_URL:
        _raise_config_error(
            "EXPEDIENTES_LICENSE_API_URL is required when licensing is enabled.",
            entrypoint=entrypoint,
            error="license_api_url_missing",
        )

    if config.MIN_FREE_MB < 0:
        _raise_config_error(
            "MIN_FREE_MB must be non-negative.",
            entrypoint=entrypoint,
            error="min_free_mb_invalid",
        )

    if config.WRITEBACK_BATCH_SIZE < 1:
        _clamp(
            "WRITEBACK_BATCH_SIZE",
            config.WRITEBACK_BATCH_SIZE,
            1,
            entrypoint=entrypoint,
            reason="< 1",
        )

    if config.DELAY_BETWEEN_RECORDS_SECONDS < 0:
        _clamp(
            "DELAY_BETWEEN_RECORDS_SECONDS",
            config.DELAY_BETWEEN_RECORDS_SECONDS,
            0.0,
            entrypoint=entrypoint,
            reason="is negative",
        )

    if config.LIBERATION_ATTEMPTS < 1:
        _clamp(
            "LIBERATION_ATTEMPTS",
            config.LIBERATION_ATTEMPTS,
            1,
            entrypoint=entrypoint,
            reason="< 1",
        )

    timeout_fields = [
        ("NAV_TIMEOUT_SECONDS", config.NAV_TIMEOUT_SECONDS),
        ("LOGIN_FIELD_TIMEOUT_SECONDS", config.LOGIN_FIELD_TIMEOUT_SECONDS),
        ("RESULTS_TIMEOUT_SECONDS", config.RESULTS_TIMEOUT_SECONDS),
        ("MODAL_TIMEOUT_SECONDS", config.MODAL_TIMEOUT_SECONDS),
    ]

    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
            )


__all__ = ["validate_runtime_config", "Entrypoint"]
