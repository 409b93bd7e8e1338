from __future__ import annotations

"""Error code taxonomy for run and record failures.

Codes travel in ``AppError.code``, structured log lines and the run result
returned to callers, so they should stay stable.
"""


class ErrorCode:
    VALIDATION = "VALIDATION_ERROR"
    BROWSER_NOT_FOUND = "BROWSER_NOT_FOUND"
    LAUNCH_FAILED = "LAUNCH_FAILED"
    LOGIN_FAILED = "LOGIN_FAILED"
    CREDENTIALS_NOT_CONFIGURED = "CREDENTIALS_NOT_CONFIGURED"
    ALREADY_RUNNING = "ALREADY_RUNNING"
    LICENSE_INVALID = "LICENSE_INVALID"
    NETWORK = "NETWORK_ERROR"
    AUTOMATION = "AUTOMATION_ERROR"
    SEARCH_INPUT_MISSING = "SEARCH_INPUT_MISSING"
    LIBERATION_FAILED = "LIBERATION_FAILED"
    INTERNAL = "INTERNAL_ERROR"


# Codes that abort a run before any record is processed.
FATAL_RUN_CODES = {
    ErrorCode.VALIDATION,
    ErrorCode.BROWSER_NOT_FOUND,
    ErrorCode.LAUNCH_FAILED,
    ErrorCode.LOGIN_FAILED,
    ErrorCode.CREDENTIALS_NOT_CONFIGURED,
    ErrorCode.ALREADY_RUNNING,
    ErrorCode.LICENSE_INVALID,
}


__all__ = ["ErrorCode", "FATAL_RUN_CODES"]
