from decimal import Decimal

import pytest

from app.expedientes.models import ReleaseLogicConfig
from app.expedientes.policy import (
    NO_RELEASE,
    RULE_EXACT,
    RULE_MARGIN,
    RULE_SUPERIOR,
    ReleaseDecision,
    decide,
    to_cents,
)

ALL_ON = ReleaseLogicConfig(margin_logic=True, superior_logic=True)
MARGIN_ONLY = ReleaseLogicConfig(margin_logic=True)
SUPERIOR_ONLY = ReleaseLogicConfig(superior_logic=True)


@pytest.mark.parametrize("config", [None, ReleaseLogicConfig(), MARGIN_ONLY, SUPERIOR_ONLY, ALL_ON])
def test_exact_match_releases_under_any_config(config) -> None:
    assert decide(Decimal("500.00"), Decimal("500"), config) == ReleaseDecision(True, RULE_EXACT)


def test_exact_match_wins_over_other_rules() -> None:
    assert decide(100, 100, ALL_ON).rule == RULE_EXACT


def test_everything_off_except_exact() -> None:
    assert decide(Decimal("501"), Decimal("500"), ReleaseLogicConfig()) == NO_RELEASE


@pytest.mark.parametrize(
    "system, expected",
    [
        ("90", ReleaseDecision(True, RULE_MARGIN)),
        ("110", ReleaseDecision(True, RULE_MARGIN)),
        ("105.50", ReleaseDecision(True, RULE_MARGIN)),
        ("89.99", NO_RELEASE),
        ("110.01", NO_RELEASE),
    ],
)
def test_margin_boundaries_on_one_hundred(system: str, expected: ReleaseDecision) -> None:
    assert decide(Decimal(system), Decimal("100"), MARGIN_ONLY) == expected


def test_margin_precedes_superior() -> None:
    assert decide(Decimal("105"), Decimal("100"), ALL_ON).rule == RULE_MARGIN


def test_superior_releases_only_when_system_is_higher() -> None:
    assert decide(Decimal("200"), Decimal("100"), SUPERIOR_ONLY) == ReleaseDecision(True, RULE_SUPERIOR)
    assert decide(Decimal("50"), Decimal("100"), SUPERIOR_ONLY) == NO_RELEASE


def test_superior_applies_beyond_margin() -> None:
    assert decide(Decimal("150"), Decimal("100"), ALL_ON).rule == RULE_SUPERIOR


def test_below_margin_never_released() -> None:
    assert decide(Decimal("80"), Decimal("100"), ALL_ON) == NO_RELEASE


def test_zero_saved_cost_with_margin() -> None:
    assert decide(0, 0, MARGIN_ONLY).rule == RULE_EXACT
    assert decide(Decimal("1"), 0, MARGIN_ONLY) == NO_RELEASE
    assert decide(Decimal("1"), 0, ALL_ON).rule == RULE_SUPERIOR


def test_decide_is_deterministic() -> None:
    results = {decide(Decimal("104.99"), Decimal("100"), ALL_ON) for _ in range(20)}
    assert results == {ReleaseDecision(True, RULE_MARGIN)}


def test_to_cents_rounds_half_up() -> None:
    assert to_cents("10.005") == 1001
    assert to_cents(Decimal("10.004")) == 1000
    assert to_cents(500) == 50000
    assert to_cents(0.1 + 0.2) == 30


def test_to_cents_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        to_cents("abc")


def test_from_mapping_cannot_disable_exact_match() -> None:
    config = ReleaseLogicConfig.from_mapping({"exactMatch": False, "marginLogic": True})
    assert config.exact_match is True
    assert config.margin_logic is True
    assert config.superior_logic is False
    assert decide(7, 7, config).rule == RULE_EXACT
