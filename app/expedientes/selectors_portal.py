from __future__ import annotations

"""Selectors and text hints for the provider portal."""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class PortalSelectors:
    """Selector hints for the login form, search listing and accept modal.

    The portal is an Angular Material app whose markup changes between
    releases, so the search input is probed through an ordered list of
    candidates. The accept button in the first cell has no stable label and
    is matched structurally instead.
    """

    username_input: str = 'input[formcontrolname="username"]'
    password_input: str = 'input[formcontrolname="password"]'
    login_submit: str = 'button[type="submit"]'
    search_input_candidates: Tuple[str, ...] = (
        'input[placeholder="No. Expediente:*"]',
        'input[formcontrolname="expediente"]',
        "input.mat-mdc-input-element",
        'input[type="text"]',
    )
    search_button_text: str = "Buscar"
    results_row: str = "table tbody tr"
    no_results: str = ".no-results"
    action_cell_index: int = 0
    action_control: str = "button:has(.mat-mdc-button-touch-target), button"
    modal_container: str = ".cdk-overlay-container"
    confirm_texts: Tuple[str, ...] = ("aceptar", "accept")


PORTAL_SELECTORS = PortalSelectors()

__all__ = [
    "PortalSelectors",
    "PORTAL_SELECTORS",
]
