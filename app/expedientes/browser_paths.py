"""Locate a local Chromium-family browser binary for the session engine.

Search order per platform: the vendor's default install locations, then the
browser registered as the OS default handler (Windows only), then common
alternates. ``EXPEDIENTES_BROWSER_PATH`` short-circuits the search.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from . import config
from .errors import BrowserNotFoundError
from .logging_utils import _run_event


def _home() -> Path:
    return Path.home()


def _windows_vendor_paths() -> List[str]:
    program_files = os.environ.get("PROGRAMFILES", r"C:\Program Files")
    program_files_x86 = os.environ.get("PROGRAMFILES(X86)", r"C:\Program Files (x86)")
    local = os.environ.get("LOCALAPPDATA", str(_home() / "AppData" / "Local"))
    return [
        rf"{program_files}\Google\Chrome\Application\chrome.exe",
        rf"{program_files_x86}\Google\Chrome\Application\chrome.exe",
        rf"{local}\Google\Chrome\Application\chrome.exe",
    ]


def _windows_alternate_paths() -> List[str]:
    local = os.environ.get("LOCALAPPDATA", str(_home() / "AppData" / "Local"))
    return [
        r"C:\Program Files\Microsoft\Edge\Application\msedge.exe",
        r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe",
        rf"{local}\Microsoft\Edge\Application\msedge.exe",
        r"C:\Program Files\BraveSoftware\Brave-Browser\Application\brave.exe",
    ]


def _query_registry(args: List[str]) -> str:
    return subprocess.run(args, capture_output=True, text=True, check=True).stdout


def windows_default_browser(query: Callable[[List[str]], str] = _query_registry) -> Optional[str]:
    """Return the executable registered for ``http`` URLs, if any."""

    try:
        choice = query(
            [
                "reg",
                "query",
                r"HKEY_CURRENT_USER\Software\Microsoft\Windows\Shell\Associations\UrlAssociations\http\UserChoice",
                "/v",
                "ProgId",
            ]
        )
        prog_id = choice.split("REG_SZ", 1)[1].strip()
        command = query(["reg", "query", rf"HKEY_CLASSES_ROOT\{prog_id}\shell\open\command", "/ve"])
        raw = command.split("REG_SZ", 1)[1].strip()
    except (OSError, IndexError, subprocess.CalledProcessError) as exc:
        _run_event("browser", step="default_browser_lookup_failed", error=str(exc))
        return None

    if raw.startswith('"'):
        return raw[1:].split('"', 1)[0]
    return raw.split(" ", 1)[0]


def _macos_paths() -> List[str]:
    bundles = [
        "Google Chrome.app/Contents/MacOS/Google Chrome",
        "Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        "Chromium.app/Contents/MacOS/Chromium",
        "Brave Browser.app/Contents/MacOS/Brave Browser",
    ]
    paths: List[str] = []
    for bundle in bundles:
        paths.append(f"/Applications/{bundle}")
        paths.append(str(_home() / "Applications" / bundle))
    return paths


LINUX_BINARIES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "microsoft-edge",
    "brave-browser",
)


def _linux_paths(which: Callable[[str], Optional[str]]) -> List[str]:
    paths = ["/usr/bin/google-chrome", "/usr/bin/chromium", "/usr/bin/chromium-browser"]
    for binary in LINUX_BINARIES:
        found = which(binary)
        if found:
            paths.append(found)
    return paths


def candidate_paths(
    platform: str,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
    default_browser: Callable[[], Optional[str]] = windows_default_browser,
) -> Iterable[str]:
    """Yield candidate executables for ``platform`` in priority order."""

    if platform.startswith("win"):
        yield from _windows_vendor_paths()
        registered = default_browser()
        if registered:
            yield registered
        yield from _windows_alternate_paths()
    elif platform == "darwin":
        yield from _macos_paths()
    else:
        yield from _linux_paths(which)


def resolve_browser_executable(
    platform: Optional[str] = None,
    *,
    exists: Callable[[str], bool] = os.path.isfile,
    which: Callable[[str], Optional[str]] = shutil.which,
    default_browser: Callable[[], Optional[str]] = windows_default_browser,
) -> Path:
    """Return the first usable browser executable or raise ``BrowserNotFoundError``."""

    override = config.BROWSER_EXECUTABLE
    if override:
        if exists(override):
            return Path(override)
        raise BrowserNotFoundError(
            "Configured browser executable does not exist", path=override
        )

    platform = platform or sys.platform
    tried: List[str] = []
    for path in candidate_paths(platform, which=which, default_browser=default_browser):
        if path in tried:
            continue
        tried.append(path)
        if exists(path):
            _run_event("browser", step="resolved", platform=platform, path=path)
            return Path(path)

    raise BrowserNotFoundError(
        "No compatible browser installed; install Chrome or Edge to continue",
        platform=platform,
        tried=len(tried),
    )


__all__ = ["candidate_paths", "resolve_browser_executable", "windows_default_browser"]
