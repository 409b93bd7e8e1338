from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from app.expedientes import config
from app.expedientes import session as session_module
from app.expedientes.errors import (
    CredentialsNotConfiguredError,
    LaunchError,
    LiberationError,
    LoginError,
)
from app.expedientes.models import Credentials, ReleaseLogicConfig, ValidationLabel
from app.expedientes.policy import RULE_EXACT, RULE_MARGIN
from app.expedientes.session import LiberationCommand, PortalSession

BASE_URL = "https://portal.test"
SEARCH_URL = f"{BASE_URL}/admin/services/pendientes"
CREDS = Credentials(username="operador", password="secreto")


def _row(cost: str, status: str = "Activo") -> List[str]:
    return ["", "ID", cost, status, "Sin notas", "01/02/2024", "Grúa", "Arrastre"]


class FakePortalPage:
    """In-memory ``PortalPage``: results are keyed by the searched case id."""

    def __init__(
        self,
        rows: Optional[Dict[str, Optional[List[str]]]] = None,
        *,
        login_ok: bool = True,
        login_form: bool = True,
        search_input: bool = True,
        accept_button: bool = True,
        confirm_button: bool = True,
        raise_on_search: Iterable[str] = (),
    ) -> None:
        self.rows = rows or {}
        self.login_ok = login_ok
        self.login_form = login_form
        self.search_input = search_input
        self.accept_button = accept_button
        self.confirm_button = confirm_button
        self.raise_on_search = set(raise_on_search)
        self._url = ""
        self.current_query = ""
        self.logged_in = False
        self.typed: List[tuple] = []
        self.gotos: List[str] = []
        self.clicks: List[str] = []
        self.liberated: List[str] = []
        self.pauses: List[float] = []
        self.closed = 0

    @property
    def url(self) -> str:
        return self._url

    def goto(self, url: str) -> None:
        self.gotos.append(url)
        self._url = url

    def wait_for_settle(self) -> None:
        return None

    def wait_for_selector(self, selector: str, timeout_s: float) -> bool:
        if "formcontrolname" in selector:
            return self.login_form
        return True

    def wait_for_any(self, selectors: Sequence[str], timeout_s: float) -> bool:
        return self.rows.get(self.current_query) is not None

    def count(self, selector: str) -> int:
        if selector == 'input[formcontrolname="password"]':
            return 0 if self.logged_in else 1
        return 0

    def type_into(self, selector: str, text: str, delay_ms: int) -> None:
        self.typed.append((selector, text, delay_ms))

    def click(self, selector: str) -> None:
        self.clicks.append(selector)
        if selector == 'button[type="submit"]':
            self.logged_in = self.login_ok

    def locate_input(self, candidates: Iterable[str]) -> Optional[str]:
        candidates = list(candidates)
        return candidates[0] if self.search_input and candidates else None

    def clear_and_type(self, selector: str, text: str, delay_ms: int) -> None:
        self.current_query = text
        self.typed.append((selector, text, delay_ms))

    def submit_search(self, button_text: str) -> str:
        if self.current_query in self.raise_on_search:
            raise RuntimeError(f"Target page crashed while searching {self.current_query}")
        return "button"

    def extract_result_row(self, row_selector: str) -> Optional[List[str]]:
        row = self.rows.get(self.current_query)
        return list(row) if row is not None else None

    def click_structural(
        self, row_selector: str, row_index: int, cell_index: int, control_selector: str
    ) -> bool:
        return self.accept_button and self.rows.get(self.current_query) is not None

    def click_by_text(self, container_selector: str, texts: Sequence[str]) -> bool:
        if self.confirm_button:
            self.liberated.append(self.current_query)
        return self.confirm_button

    def pause(self, seconds: float) -> None:
        self.pauses.append(seconds)

    def close(self) -> None:
        self.closed += 1


def _make_session(
    page: FakePortalPage,
    *,
    release_config: Optional[ReleaseLogicConfig] = None,
    credentials: Optional[Credentials] = CREDS,
) -> PortalSession:
    return PortalSession(
        credentials_provider=lambda: credentials,
        release_config=release_config,
        launcher=lambda executable, headless: page,
        executable_resolver=lambda: Path("/usr/bin/chromium"),
        headless=True,
        base_url=BASE_URL,
        search_url=SEARCH_URL,
    )


@pytest.fixture(autouse=True)
def _no_settle_delays(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "POST_LOGIN_SETTLE_SECONDS",
        "POST_NAV_SETTLE_SECONDS",
        "POST_SEARCH_SETTLE_SECONDS",
        "MODAL_SETTLE_SECONDS",
        "POST_CONFIRM_SETTLE_SECONDS",
        "CLOSE_SETTLE_SECONDS",
    ):
        monkeypatch.setattr(config, name, 0.0)


def _ready_session(page: FakePortalPage, **kwargs) -> PortalSession:
    session = _make_session(page, **kwargs)
    session.initialize()
    session.login()
    return session


def test_login_types_credentials_and_verifies_form_is_gone() -> None:
    page = FakePortalPage()
    session = _ready_session(page)

    assert session.is_initialized()
    assert page.gotos == [BASE_URL]
    assert ('input[formcontrolname="username"]', "operador", config.LOGIN_TYPE_DELAY_MS) in page.typed
    assert ('input[formcontrolname="password"]', "secreto", config.LOGIN_TYPE_DELAY_MS) in page.typed


def test_login_fails_when_password_field_remains() -> None:
    session = _make_session(FakePortalPage(login_ok=False))
    session.initialize()
    with pytest.raises(LoginError):
        session.login()


def test_login_fails_when_form_never_appears() -> None:
    session = _make_session(FakePortalPage(login_form=False))
    session.initialize()
    with pytest.raises(LoginError) as excinfo:
        session.login()
    assert excinfo.value.code == "LOGIN_FAILED"


def test_login_requires_credentials() -> None:
    session = _make_session(FakePortalPage(), credentials=None)
    session.initialize()
    with pytest.raises(CredentialsNotConfiguredError):
        session.login()


def test_initialize_wraps_launch_failures() -> None:
    def _boom(executable: Path, headless: bool):
        raise RuntimeError("executable doesn't exist")

    session = PortalSession(
        launcher=_boom,
        executable_resolver=lambda: Path("/nope/chrome"),
        base_url=BASE_URL,
        search_url=SEARCH_URL,
    )
    with pytest.raises(LaunchError) as excinfo:
        session.initialize()
    assert excinfo.value.context["path"] == "/nope/chrome"
    assert not session.is_initialized()


def test_no_results_is_not_found_and_not_an_error() -> None:
    page = FakePortalPage({"E-1": None})
    session = _ready_session(page)

    outcome = session.search_record("E-1", Decimal("100"))

    assert outcome.success is True
    assert outcome.error is None
    assert outcome.validation_label == ValidationLabel.NOT_FOUND
    assert outcome.system_cost == Decimal("0")
    assert outcome.status == "N/A"
    assert session.stats.to_dict() == {"total_reviewed": 1, "total_with_cost": 0, "total_accepted": 0}


def test_placeholder_cost_is_not_found() -> None:
    page = FakePortalPage({"E-1": _row("$0.00")})
    outcome = _ready_session(page).search_record("E-1", Decimal("0"))
    assert outcome.validation_label == ValidationLabel.NOT_FOUND
    assert page.liberated == []


def test_exact_match_is_liberated_and_accepted() -> None:
    page = FakePortalPage({"E-1": _row("$500.00")})
    session = _ready_session(page)

    outcome = session.search_record("E-1", Decimal("500"))

    assert outcome.validation_label == ValidationLabel.ACCEPTED
    assert outcome.rule_applied == RULE_EXACT
    assert outcome.system_cost == Decimal("500.00")
    assert outcome.status == "Activo"
    assert outcome.service == "Grúa"
    assert page.liberated == ["E-1"]
    assert session.stats.to_dict() == {"total_reviewed": 1, "total_with_cost": 1, "total_accepted": 1}


def test_mismatch_stays_pending_without_liberation() -> None:
    page = FakePortalPage({"E-1": _row("$650.00")})
    session = _ready_session(page)

    outcome = session.search_record("E-1", Decimal("500"))

    assert outcome.success is True
    assert outcome.validation_label == ValidationLabel.PENDING
    assert outcome.rule_applied is None
    assert page.liberated == []
    assert session.stats.total_accepted == 0
    assert session.stats.total_with_cost == 1


def test_margin_rule_applies_when_enabled() -> None:
    page = FakePortalPage({"E-1": _row("$105.00")})
    session = _ready_session(page, release_config=ReleaseLogicConfig(margin_logic=True))

    outcome = session.search_record("E-1", Decimal("100"))

    assert outcome.validation_label == ValidationLabel.ACCEPTED
    assert outcome.rule_applied == RULE_MARGIN


def test_failed_confirmation_downgrades_to_pending() -> None:
    page = FakePortalPage({"E-1": _row("$500.00")}, confirm_button=False)
    session = _ready_session(page)

    outcome = session.search_record("E-1", Decimal("500"))

    assert outcome.success is True
    assert outcome.error is None
    assert outcome.validation_label == ValidationLabel.PENDING
    assert outcome.rule_applied == RULE_EXACT
    assert session.stats.total_accepted == 1


def test_liberate_raises_when_accept_button_missing() -> None:
    page = FakePortalPage({"E-1": _row("$500.00")}, accept_button=False)
    session = _ready_session(page)
    page.current_query = "E-1"

    with pytest.raises(LiberationError) as excinfo:
        session.liberate(LiberationCommand(case_id="E-1", rule=RULE_EXACT), attempts=2)
    assert excinfo.value.phase == "liberate"


def test_exception_during_search_becomes_failed_outcome() -> None:
    page = FakePortalPage({"E-2": _row("$10")}, raise_on_search={"E-1"})
    session = _ready_session(page)

    failed = session.search_record("E-1", Decimal("10"))
    ok = session.search_record("E-2", Decimal("10"))

    assert failed.success is False
    assert failed.error_phase == "search"
    assert "Target page crashed" in failed.error
    assert failed.validation_label == ValidationLabel.NOT_FOUND
    assert ok.validation_label == ValidationLabel.ACCEPTED


def test_missing_search_input_fails_only_the_record() -> None:
    page = FakePortalPage({"E-1": _row("$10")}, search_input=False)
    outcome = _ready_session(page).search_record("E-1", Decimal("10"))
    assert outcome.success is False
    assert outcome.error == "Could not find search input field"
    assert outcome.error_phase == "search"


def test_search_navigates_only_when_not_on_listing() -> None:
    page = FakePortalPage({"E-1": _row("$1"), "E-2": _row("$2")})
    session = _ready_session(page)

    session.search_record("E-1", Decimal("1"))
    session.search_record("E-2", Decimal("2"))

    assert page.gotos == [BASE_URL, SEARCH_URL]
    assert ('input[placeholder="No. Expediente:*"]', "E-2", config.SEARCH_TYPE_DELAY_MS) in page.typed


def test_search_without_initialize_fails_the_record() -> None:
    session = _make_session(FakePortalPage())
    outcome = session.search_record("E-1", Decimal("1"))
    assert outcome.success is False
    assert outcome.error_phase == "navigate"


def test_stats_are_snapshots_and_reset() -> None:
    page = FakePortalPage({"E-1": _row("$1")})
    session = _ready_session(page)
    before = session.stats

    session.search_record("E-1", Decimal("1"))

    assert before.total_reviewed == 0
    assert session.stats.total_reviewed == 1
    session.reset_stats()
    assert session.stats.total_reviewed == 0


def test_close_session_is_idempotent() -> None:
    page = FakePortalPage()
    session = _ready_session(page)

    session.close_session()
    session.close_session()

    assert page.closed == 1
    assert not session.is_initialized()


def test_close_session_without_initialize_is_noop() -> None:
    _make_session(FakePortalPage()).close_session()


def test_search_logs_record_event(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[tuple] = []
    monkeypatch.setattr(
        session_module, "_run_event", lambda label="", **fields: events.append((label, fields))
    )
    page = FakePortalPage({"E-1": _row("$3")})
    _ready_session(page).search_record("E-1", Decimal("3"))

    record_events = [fields for label, fields in events if label == "record"]
    assert record_events and record_events[-1]["case_id"] == "E-1"
    assert record_events[-1]["validation"] == ValidationLabel.ACCEPTED
