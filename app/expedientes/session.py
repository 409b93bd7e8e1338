"""Browser session engine for the provider portal.

One ``PortalSession`` drives a single authenticated page for a whole batch:

- ``initialize()`` resolves a local browser binary and launches it.
- ``login()`` signs in and checks that the password field is gone.
- ``search_record()`` searches one expediente, scrapes the first results
  row, runs the release policy and, when it says so, liberates the case.
- ``close_session()`` shuts everything down and is safe to call twice.

Per-record problems never escape ``search_record``; they come back as a
failed ``SearchOutcome`` so the caller can carry on with the next case.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional

from . import config
from .browser_paths import resolve_browser_executable
from .error_codes import ErrorCode
from .errors import (
    AppError,
    AutomationError,
    CredentialsNotConfiguredError,
    LaunchError,
    LiberationError,
    LoginError,
)
from .logging_utils import _run_event
from .models import Credentials, ReleaseLogicConfig, RunStats, SearchOutcome, ValidationLabel
from .parser import ResultRow, has_meaningful_cost
from .policy import decide
from .portal_page import PortalPage, launch_portal_page
from .selectors_portal import PORTAL_SELECTORS, PortalSelectors
from .utils import log_line, short_error_message

PageLauncher = Callable[[Path, bool], PortalPage]
CredentialsProvider = Callable[[], Optional[Credentials]]


def _default_launcher(executable: Path, headless: bool) -> PortalPage:
    return launch_portal_page(executable, headless=headless)


@dataclass(frozen=True)
class LiberationCommand:
    """Request to accept the case currently shown in results row ``row_index``."""

    case_id: str
    rule: int
    row_index: int = 0


class PortalSession:
    def __init__(
        self,
        *,
        credentials_provider: Optional[CredentialsProvider] = None,
        release_config: Optional[ReleaseLogicConfig] = None,
        selectors: PortalSelectors = PORTAL_SELECTORS,
        launcher: PageLauncher = _default_launcher,
        executable_resolver: Callable[[], Path] = resolve_browser_executable,
        headless: Optional[bool] = None,
        base_url: Optional[str] = None,
        search_url: Optional[str] = None,
        liberation_attempts: Optional[int] = None,
    ) -> None:
        self._credentials_provider = credentials_provider
        self._release_config = release_config or ReleaseLogicConfig()
        self._selectors = selectors
        self._launcher = launcher
        self._executable_resolver = executable_resolver
        self._headless = config.HEADLESS if headless is None else headless
        self._base_url = base_url or config.PORTAL_BASE_URL
        self._search_url = search_url or config.portal_search_url()
        self._liberation_attempts = max(
            1, liberation_attempts if liberation_attempts is not None else config.LIBERATION_ATTEMPTS
        )
        self._page: Optional[PortalPage] = None
        self._stats = RunStats()

    # -- lifecycle -----------------------------------------------------

    def initialize(self) -> None:
        """Launch the browser; raises ``LaunchError`` when it cannot start."""

        if self._page is not None:
            return
        executable = self._executable_resolver()
        log_line(f"[SESSION] Launching browser {executable} (headless={self._headless})")
        try:
            self._page = self._launcher(executable, self._headless)
        except LaunchError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise LaunchError(
                "Failed to initialize browser", cause=exc, path=str(executable)
            ) from exc
        _run_event("session", step="initialized", path=str(executable))

    def is_initialized(self) -> bool:
        return self._page is not None

    def close_session(self) -> None:
        """Close the browser after a short settle; no-op when not initialized."""

        page = self._page
        if page is None:
            return
        self._page = None
        try:
            page.pause(config.CLOSE_SETTLE_SECONDS)
        except Exception:  # noqa: BLE001
            pass
        try:
            page.close()
        finally:
            _run_event("session", step="closed")

    # -- configuration and stats ---------------------------------------

    @property
    def release_config(self) -> ReleaseLogicConfig:
        return self._release_config

    def set_release_config(self, release_config: ReleaseLogicConfig) -> None:
        self._release_config = release_config
        _run_event("session", step="release_config", **release_config.to_dict())

    @property
    def stats(self) -> RunStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = RunStats()

    def _require_page(self, phase: str) -> PortalPage:
        if self._page is None:
            raise AutomationError("Browser session is not initialized", phase=phase)
        return self._page

    # -- login ---------------------------------------------------------

    def login(self, credentials: Optional[Credentials] = None) -> None:
        """Sign in to the portal; raises ``LoginError`` on any failure."""

        if credentials is None and self._credentials_provider is not None:
            credentials = self._credentials_provider()
        if credentials is None or not credentials.is_complete():
            raise CredentialsNotConfiguredError("Portal credentials are not configured")

        page = self._require_page("login")
        sel = self._selectors
        log_line(f"[SESSION] Logging in as {credentials.username}")
        try:
            page.goto(self._base_url)
            for selector in (sel.username_input, sel.password_input):
                if not page.wait_for_selector(selector, config.LOGIN_FIELD_TIMEOUT_SECONDS):
                    raise LoginError("Login form did not appear", selector=selector)
            page.type_into(sel.username_input, credentials.username, config.LOGIN_TYPE_DELAY_MS)
            page.type_into(sel.password_input, credentials.password, config.LOGIN_TYPE_DELAY_MS)
            page.click(sel.login_submit)
            page.wait_for_settle()
            if page.count(sel.password_input):
                raise LoginError("Login failed: password field still present after submit")
        except LoginError as exc:
            _run_event("error", phase="login", error=str(exc))
            raise
        except Exception as exc:  # noqa: BLE001
            _run_event("error", phase="login", error=short_error_message(exc))
            raise LoginError("Login failed", cause=exc) from exc

        page.pause(config.POST_LOGIN_SETTLE_SECONDS)
        _run_event("session", step="logged_in", username=credentials.username)

    # -- per-record search ---------------------------------------------

    def search_record(self, case_id: str, saved_cost: Decimal = Decimal("0")) -> SearchOutcome:
        """Search ``case_id`` and reconcile its cost against ``saved_cost``."""

        started = time.monotonic()
        self._stats = self._stats.bump(reviewed=1)
        phase = "navigate"
        try:
            page = self._require_page(phase)
            self._navigate_to_search(page)
            phase = "search"
            self._perform_search(page, case_id)
            phase = "extract"
            outcome = self._extract_and_reconcile(page, case_id, saved_cost)
        except Exception as exc:  # noqa: BLE001
            elapsed = int((time.monotonic() - started) * 1000)
            if isinstance(exc, AutomationError) and exc.phase:
                phase = exc.phase
            message = exc.message if isinstance(exc, AppError) else short_error_message(exc)
            log_line(f"[SESSION][ERROR] case={case_id} phase={phase}: {message}")
            _run_event("error", phase=phase, case_id=case_id, error=message)
            return SearchOutcome.failure(case_id, message, phase=phase, processing_time_ms=elapsed)

        outcome.processing_time_ms = int((time.monotonic() - started) * 1000)
        _run_event(
            "record",
            case_id=case_id,
            validation=outcome.validation_label,
            rule=outcome.rule_applied,
            ms=outcome.processing_time_ms,
        )
        return outcome

    def _navigate_to_search(self, page: PortalPage) -> None:
        if page.url.startswith(self._search_url):
            return
        log_line("[SESSION] Navigating to search page")
        page.goto(self._search_url)
        page.pause(config.POST_NAV_SETTLE_SECONDS)

    def _perform_search(self, page: PortalPage, case_id: str) -> None:
        sel = self._selectors
        selector = page.locate_input(sel.search_input_candidates)
        if selector is None:
            raise AutomationError(
                "Could not find search input field",
                code=ErrorCode.SEARCH_INPUT_MISSING,
                case_id=case_id,
                phase="search",
            )
        page.clear_and_type(selector, str(case_id), config.SEARCH_TYPE_DELAY_MS)
        via = page.submit_search(sel.search_button_text)
        if not page.wait_for_any((sel.results_row, sel.no_results), config.RESULTS_TIMEOUT_SECONDS):
            log_line(f"[SESSION] No results marker for case={case_id}; treating as empty.")
        page.pause(config.POST_SEARCH_SETTLE_SECONDS)
        _run_event("search", case_id=case_id, input=selector, submitted_via=via)

    def _extract_and_reconcile(
        self, page: PortalPage, case_id: str, saved_cost: Decimal
    ) -> SearchOutcome:
        cells = page.extract_result_row(self._selectors.results_row)
        if not has_meaningful_cost(cells):
            return SearchOutcome.empty(case_id)

        try:
            row = ResultRow.from_cells(cells or [])
        except ValueError as exc:
            raise AutomationError(str(exc), case_id=case_id, phase="extract") from exc

        self._stats = self._stats.bump(with_cost=1)
        decision = decide(row.cost, saved_cost, self._release_config)
        outcome = SearchOutcome.found(
            case_id,
            system_cost=row.cost,
            status=row.status,
            notes=row.notes,
            registration_date=row.registration_date,
            service=row.service,
            subservice=row.subservice,
            validation_label=ValidationLabel.PENDING,
            rule_applied=decision.rule,
        )
        if not decision.release:
            log_line(
                f"[SESSION] case={case_id} not released (system={row.cost}, saved={saved_cost})"
            )
            return outcome

        self._stats = self._stats.bump(accepted=1)
        log_line(
            f"[SESSION] case={case_id} releasable by rule {decision.rule} "
            f"(system={row.cost}, saved={saved_cost})"
        )
        command = LiberationCommand(case_id=case_id, rule=decision.rule or 0)
        try:
            self.liberate(command)
            outcome.validation_label = ValidationLabel.ACCEPTED
        except LiberationError as exc:
            log_line(f"[SESSION][WARN] Liberation failed for case={case_id}: {exc}")
            outcome.validation_label = ValidationLabel.PENDING
        return outcome

    # -- liberation ----------------------------------------------------

    def liberate(self, command: LiberationCommand, *, attempts: Optional[int] = None) -> None:
        """Click the row's accept button and confirm the modal.

        Raises ``LiberationError`` once every attempt has failed.
        """

        attempts = max(1, attempts if attempts is not None else self._liberation_attempts)
        last_error: Optional[LiberationError] = None
        for attempt in range(1, attempts + 1):
            try:
                self._liberate_once(command)
                _run_event("liberation", case_id=command.case_id, rule=command.rule, attempt=attempt)
                return
            except LiberationError as exc:
                last_error = exc
            except Exception as exc:  # noqa: BLE001
                last_error = LiberationError(
                    "Liberation step raised", case_id=command.case_id, phase="liberate", cause=exc
                )
            _run_event(
                "error",
                phase="liberate",
                case_id=command.case_id,
                attempt=attempt,
                attempts=attempts,
                error=str(last_error),
            )
        assert last_error is not None
        raise last_error

    def _liberate_once(self, command: LiberationCommand) -> None:
        page = self._require_page("liberate")
        sel = self._selectors
        clicked = page.click_structural(
            sel.results_row, command.row_index, sel.action_cell_index, sel.action_control
        )
        if not clicked:
            raise LiberationError(
                "Accept button not found", case_id=command.case_id, phase="liberate"
            )
        page.wait_for_selector(f"{sel.modal_container} button", config.MODAL_TIMEOUT_SECONDS)
        page.pause(config.MODAL_SETTLE_SECONDS)
        if not page.click_by_text(sel.modal_container, sel.confirm_texts):
            raise LiberationError(
                "Could not confirm acceptance in modal", case_id=command.case_id, phase="confirm"
            )
        page.pause(config.POST_CONFIRM_SETTLE_SECONDS)


__all__ = ["PortalSession", "LiberationCommand"]
