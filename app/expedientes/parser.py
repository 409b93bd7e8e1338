"""Parsing helpers for the portal's search results table."""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

from bs4 import BeautifulSoup

# Fixed column positions in the pending-services results table.
COST_CELL = 2
STATUS_CELL = 3
NOTES_CELL = 4
REGISTRATION_DATE_CELL = 5
SERVICE_CELL = 6
SUBSERVICE_CELL = 7

# Rendered by the portal for rows that carry no real cost.
ZERO_COST_PLACEHOLDERS = frozenset({"$0", "$0.00"})

_WHITESPACE = re.compile(r"\s+")


def clean_text(value: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()


def parse_table_rows(html: str) -> list[list[str]]:
    """Return the text of every ``td`` per ``tr`` found in ``html``.

    ``html`` may be a full table, a ``tbody`` or bare ``tr`` markup; bare
    fragments are wrapped so the parser keeps the row structure.
    """

    if not html or not html.strip():
        return []
    markup = html if "<table" in html.lower() else f"<table><tbody>{html}</tbody></table>"
    soup = BeautifulSoup(markup, "html.parser")
    rows: list[list[str]] = []
    for tr in soup.find_all("tr"):
        cells = [clean_text(td.get_text(" ")) for td in tr.find_all("td")]
        if cells:
            rows.append(cells)
    return rows


def first_row_cells(html: str) -> Optional[list[str]]:
    rows = parse_table_rows(html)
    return rows[0] if rows else None


def _cell(cells: Sequence[str], index: int) -> str:
    return cells[index] if 0 <= index < len(cells) else ""


def has_meaningful_cost(cells: Optional[Sequence[str]]) -> bool:
    """Return ``True`` when the cost cell holds a real (non-placeholder) value."""

    if not cells:
        return False
    raw = _cell(cells, COST_CELL).replace(" ", "")
    return bool(raw) and raw not in ZERO_COST_PLACEHOLDERS


def parse_cost(raw: Optional[str]) -> Decimal:
    """Parse ``$1,234.56`` style text into a ``Decimal``.

    Raises ``ValueError`` when no number can be read.
    """

    text = clean_text(raw).replace("$", "").replace(",", "").replace(" ", "")
    if not text:
        raise ValueError(f"Empty cost value: {raw!r}")
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"Unparseable cost value: {raw!r}") from exc


@dataclass(frozen=True)
class ResultRow:
    """The fields scraped from the first results row."""

    raw_cost: str
    cost: Decimal
    status: str
    notes: str
    registration_date: str
    service: str
    subservice: str

    @classmethod
    def from_cells(cls, cells: Sequence[str]) -> "ResultRow":
        raw_cost = _cell(cells, COST_CELL)
        return cls(
            raw_cost=raw_cost,
            cost=parse_cost(raw_cost),
            status=_cell(cells, STATUS_CELL),
            notes=_cell(cells, NOTES_CELL),
            registration_date=_cell(cells, REGISTRATION_DATE_CELL),
            service=_cell(cells, SERVICE_CELL),
            subservice=_cell(cells, SUBSERVICE_CELL),
        )


__all__ = [
    "ZERO_COST_PLACEHOLDERS",
    "ResultRow",
    "clean_text",
    "first_row_cells",
    "has_meaningful_cost",
    "parse_cost",
    "parse_table_rows",
]
