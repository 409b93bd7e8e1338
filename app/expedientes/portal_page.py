"""Page interaction capability used by the session engine.

``PortalPage`` is the narrow set of browser actions the engine needs. The
Playwright implementation below is the only one shipped; tests drive the
engine through an in-memory fake with the same surface.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Protocol, Sequence

from playwright.sync_api import (
    Browser,
    BrowserContext,
    Error as PWError,
    Page,
    Playwright,
    TimeoutError as PWTimeout,
    sync_playwright,
)

from . import config
from .errors import LaunchError
from .logging_utils import _run_event
from .parser import first_row_cells
from .utils import log_line


class PortalPage(Protocol):
    @property
    def url(self) -> str: ...

    def goto(self, url: str) -> None: ...

    def wait_for_settle(self) -> None: ...

    def wait_for_selector(self, selector: str, timeout_s: float) -> bool: ...

    def wait_for_any(self, selectors: Sequence[str], timeout_s: float) -> bool: ...

    def count(self, selector: str) -> int: ...

    def type_into(self, selector: str, text: str, delay_ms: int) -> None: ...

    def click(self, selector: str) -> None: ...

    def locate_input(self, candidates: Iterable[str]) -> Optional[str]: ...

    def clear_and_type(self, selector: str, text: str, delay_ms: int) -> None: ...

    def submit_search(self, button_text: str) -> str: ...

    def extract_result_row(self, row_selector: str) -> Optional[list[str]]: ...

    def click_structural(
        self, row_selector: str, row_index: int, cell_index: int, control_selector: str
    ) -> bool: ...

    def click_by_text(self, container_selector: str, texts: Sequence[str]) -> bool: ...

    def pause(self, seconds: float) -> None: ...

    def close(self) -> None: ...


class PlaywrightPortalPage:
    """``PortalPage`` over a sync Playwright page that it owns."""

    def __init__(
        self,
        page: Page,
        *,
        browser: Optional[Browser] = None,
        context: Optional[BrowserContext] = None,
        playwright: Optional[Playwright] = None,
    ) -> None:
        self._page = page
        self._browser = browser
        self._context = context
        self._playwright = playwright
        self._page.set_default_navigation_timeout(config.NAV_TIMEOUT_SECONDS * 1000)
        self._page.set_default_timeout(config.NAV_TIMEOUT_SECONDS * 1000)

    @property
    def url(self) -> str:
        try:
            return self._page.url or ""
        except PWError:
            return ""

    def goto(self, url: str) -> None:
        _run_event("nav", step="goto", url=url)
        self._page.goto(
            url,
            wait_until="networkidle",
            timeout=config.NAV_TIMEOUT_SECONDS * 1000,
        )

    def wait_for_settle(self) -> None:
        try:
            self._page.wait_for_load_state(
                "networkidle", timeout=config.NAV_TIMEOUT_SECONDS * 1000
            )
        except PWTimeout:
            log_line("[PAGE] networkidle timeout; continuing.")

    def wait_for_selector(self, selector: str, timeout_s: float) -> bool:
        try:
            self._page.wait_for_selector(selector, timeout=int(timeout_s * 1000))
            return True
        except PWTimeout:
            return False

    def wait_for_any(self, selectors: Sequence[str], timeout_s: float) -> bool:
        return self.wait_for_selector(", ".join(selectors), timeout_s)

    def count(self, selector: str) -> int:
        return self._page.locator(selector).count()

    def type_into(self, selector: str, text: str, delay_ms: int) -> None:
        self._page.locator(selector).first.press_sequentially(text, delay=delay_ms)

    def click(self, selector: str) -> None:
        self._page.locator(selector).first.click()

    def locate_input(self, candidates: Iterable[str]) -> Optional[str]:
        for selector in candidates:
            try:
                if self._page.locator(selector).count():
                    return selector
            except PWError as exc:
                log_line(f"[PAGE][WARN] Locator error for {selector!r}: {exc}")
                continue
        return None

    def clear_and_type(self, selector: str, text: str, delay_ms: int) -> None:
        field = self._page.locator(selector).first
        field.click(click_count=3)
        self.pause(config.INPUT_SETTLE_SECONDS)
        field.evaluate("(el) => { el.value = ''; }")
        self._page.keyboard.type(text, delay=delay_ms)
        self.pause(config.INPUT_SETTLE_SECONDS)

    def submit_search(self, button_text: str) -> str:
        button = self._page.locator("button", has_text=button_text)
        if button.count():
            button.first.click()
            return "button"
        self._page.keyboard.press("Enter")
        return "enter"

    def extract_result_row(self, row_selector: str) -> Optional[list[str]]:
        rows = self._page.locator(row_selector)
        if not rows.count():
            return None
        html = rows.first.evaluate("(el) => el.outerHTML")
        return first_row_cells(html)

    def click_structural(
        self, row_selector: str, row_index: int, cell_index: int, control_selector: str
    ) -> bool:
        cell = self._page.locator(row_selector).nth(row_index).locator("td").nth(cell_index)
        if not cell.count():
            return False
        control = cell.locator(control_selector).first
        if not control.count():
            return False
        control.click()
        return True

    def click_by_text(self, container_selector: str, texts: Sequence[str]) -> bool:
        wanted = [text.lower() for text in texts]
        buttons = self._page.locator(f"{container_selector} button")
        for index in range(buttons.count()):
            candidate = buttons.nth(index)
            label = (candidate.inner_text() or "").strip().lower()
            if any(text in label for text in wanted):
                candidate.click()
                return True
        return False

    def pause(self, seconds: float) -> None:
        if seconds is None or seconds <= 0:
            return
        if not self._page.is_closed():
            self._page.wait_for_timeout(int(seconds * 1000))

    def close(self) -> None:
        for label, closer in (
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                closer()
            except Exception as exc:  # noqa: BLE001
                log_line(f"[PAGE][WARN] Failed closing {label}: {exc}")
        self._context = None
        self._browser = None
        self._playwright = None


def launch_portal_page(executable_path: Path, *, headless: bool = False) -> PlaywrightPortalPage:
    """Start Playwright, launch the browser at ``executable_path`` and open a page."""

    playwright = sync_playwright().start()
    try:
        browser = playwright.chromium.launch(
            executable_path=str(executable_path),
            headless=headless,
            args=["--start-maximized"],
            timeout=config.BROWSER_LAUNCH_TIMEOUT_SECONDS * 1000,
        )
        context = browser.new_context(no_viewport=True)
        page = context.new_page()
    except PWError as exc:
        playwright.stop()
        raise LaunchError(
            f"Could not launch browser at {executable_path}", cause=exc, path=str(executable_path)
        ) from exc
    _run_event("browser", step="launched", path=str(executable_path), version=browser.version)
    return PlaywrightPortalPage(page, browser=browser, context=context, playwright=playwright)


__all__ = ["PortalPage", "PlaywrightPortalPage", "launch_portal_page"]
