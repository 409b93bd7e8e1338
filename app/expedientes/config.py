"""Configuration constants for the expediente reconciliation runner."""
from __future__ import annotations

import os
from pathlib import Path


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", ""}


DATA_DIR: Path = Path(os.getenv("EXPEDIENTES_DATA_DIR", "./data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
RUN_STATE_FILE: Path = DATA_DIR / "run_state.json"
SUMMARY_FILE: Path = DATA_DIR / "last_summary.json"
CREDENTIALS_FILE: Path = DATA_DIR / "credentials.json"
RUNS_DIR: Path = DATA_DIR / "runs"
EXPORTS_DIR: Path = DATA_DIR / "exports"

PORTAL_BASE_URL: str = os.getenv(
    "EXPEDIENTES_PORTAL_URL", "https://portalproveedores.ikeasistencia.com"
).rstrip("/")
PORTAL_SEARCH_PATH: str = "/admin/services/pendientes"

# Explicit browser binary; skips platform discovery when set.
BROWSER_EXECUTABLE: str = os.getenv("EXPEDIENTES_BROWSER_PATH", "").strip()
HEADLESS: bool = _env_flag("EXPEDIENTES_HEADLESS", "0")


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


# Playwright timeouts (seconds)
BROWSER_LAUNCH_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "EXPEDIENTES_LAUNCH_TIMEOUT_SECONDS", 60
)
NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds("EXPEDIENTES_NAV_TIMEOUT_SECONDS", 30)
LOGIN_FIELD_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "EXPEDIENTES_LOGIN_FIELD_TIMEOUT_SECONDS", 30
)
# Bound for the results row / no-results marker after submitting a search.
RESULTS_TIMEOUT_SECONDS: int = _parse_timeout_seconds("EXPEDIENTES_RESULTS_TIMEOUT_SECONDS", 5)
MODAL_TIMEOUT_SECONDS: int = _parse_timeout_seconds("EXPEDIENTES_MODAL_TIMEOUT_SECONDS", 5)

# Keystroke pacing (milliseconds) for the portal's client-side validation.
LOGIN_TYPE_DELAY_MS: int = int(os.getenv("EXPEDIENTES_LOGIN_TYPE_DELAY_MS", "30"))
SEARCH_TYPE_DELAY_MS: int = int(os.getenv("EXPEDIENTES_SEARCH_TYPE_DELAY_MS", "50"))

# Settle delays (seconds) for portal rendering latency.
POST_LOGIN_SETTLE_SECONDS: float = float(os.getenv("EXPEDIENTES_POST_LOGIN_SETTLE", "2.0"))
POST_NAV_SETTLE_SECONDS: float = float(os.getenv("EXPEDIENTES_POST_NAV_SETTLE", "1.5"))
INPUT_SETTLE_SECONDS: float = float(os.getenv("EXPEDIENTES_INPUT_SETTLE", "0.3"))
POST_SEARCH_SETTLE_SECONDS: float = float(os.getenv("EXPEDIENTES_POST_SEARCH_SETTLE", "1.5"))
MODAL_SETTLE_SECONDS: float = float(os.getenv("EXPEDIENTES_MODAL_SETTLE", "2.0"))
POST_CONFIRM_SETTLE_SECONDS: float = float(os.getenv("EXPEDIENTES_POST_CONFIRM_SETTLE", "3.0"))
CLOSE_SETTLE_SECONDS: float = float(os.getenv("EXPEDIENTES_CLOSE_SETTLE", "1.0"))

# Run pacing
DELAY_BETWEEN_RECORDS_SECONDS: float = float(
    os.getenv("EXPEDIENTES_DELAY_BETWEEN_RECORDS", "2.0")
)
WRITEBACK_BATCH_SIZE: int = int(os.getenv("EXPEDIENTES_WRITEBACK_BATCH_SIZE", "5"))
LIBERATION_ATTEMPTS: int = int(os.getenv("EXPEDIENTES_LIBERATION_ATTEMPTS", "1"))
RESUME_DEFAULT: bool = _env_flag("EXPEDIENTES_RESUME", "0")

# Release logic defaults; exact match is always on.
MARGIN_LOGIC_DEFAULT: bool = _env_flag("EXPEDIENTES_MARGIN_LOGIC", "0")
SUPERIOR_LOGIC_DEFAULT: bool = _env_flag("EXPEDIENTES_SUPERIOR_LOGIC", "0")

# Rule number and validation timestamp written to columns I/J.
WRITEBACK_AUDIT_COLUMNS: bool = _env_flag("EXPEDIENTES_WRITEBACK_AUDIT_COLUMNS", "0")

# Licensing gate
LICENSE_REQUIRED: bool = _env_flag("EXPEDIENTES_LICENSE_REQUIRED", "0")
LICENSE_TOKEN: str = os.getenv("EXPEDIENTES_LICENSE_TOKEN", "").strip()
LICENSE_API_BASE_URL: str = os.getenv(
    "EXPEDIENTES_LICENSE_API_URL", "https://ike-license-manager-9b796c40a448.herokuapp.com"
).rstrip("/")
LICENSE_API_TIMEOUT_SECONDS: int = _parse_timeout_seconds("EXPEDIENTES_LICENSE_API_TIMEOUT", 10)
LICENSE_API_ATTEMPTS: int = int(os.getenv("EXPEDIENTES_LICENSE_API_ATTEMPTS", "3"))
LICENSE_API_RETRY_DELAY_SECONDS: float = float(
    os.getenv("EXPEDIENTES_LICENSE_API_RETRY_DELAY", "2.0")
)

MIN_FREE_MB: int = int(os.getenv("EXPEDIENTES_MIN_FREE_MB", "50"))
EXPORTS_KEEP_MAX: int = int(os.getenv("EXPEDIENTES_EXPORTS_KEEP_MAX", "5"))

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": "expedientes-liberador/1.0",
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def portal_search_url() -> str:
    """Return the absolute URL of the pending-services search listing."""

    return f"{PORTAL_BASE_URL}{PORTAL_SEARCH_PATH}"
