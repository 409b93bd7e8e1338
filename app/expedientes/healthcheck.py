from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from . import config
from .browser_paths import resolve_browser_executable
from .config_validation import validate_runtime_config
from .credentials import CredentialsStore
from .errors import BrowserNotFoundError
from .logging_utils import _run_event
from .utils import disk_has_room, ensure_dirs, log_line


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def run_health_checks(entrypoint: str = "cli") -> HealthResult:
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_runtime_config(entrypoint or "cli")
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    ensure_dirs()
    fs_ok = disk_has_room(config.MIN_FREE_MB, config.DATA_DIR)
    checks["filesystem"] = {
        "ok": fs_ok,
        "data_dir": str(config.DATA_DIR),
        "min_free_mb": config.MIN_FREE_MB,
    }

    try:
        checks["browser"] = {"ok": True, "path": str(resolve_browser_executable())}
    except BrowserNotFoundError as exc:
        checks["browser"] = {"ok": False, "error": str(exc)}

    try:
        checks["credentials"] = {"ok": CredentialsStore().is_configured()}
    except Exception as exc:  # noqa: BLE001
        checks["credentials"] = {"ok": False, "error": str(exc)}

    # The web UI can still collect credentials, so only the CLI requires them.
    strict_credentials = entrypoint == "cli"
    overall_ok = all(
        check.get("ok", False)
        for name, check in checks.items()
        if strict_credentials or name != "credentials"
    )

    try:
        _run_event(
            "state" if overall_ok else "error",
            phase="health",
            context="healthcheck",
            ok=overall_ok,
            checks=checks,
        )
    except Exception:
        pass

    return HealthResult(ok=overall_ok, checks=checks)


if __name__ == "__main__":  # pragma: no cover
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")
    raise SystemExit(0 if result.ok else 1)
