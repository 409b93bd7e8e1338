from __future__ import annotations

from pathlib import Path

import pytest

from app.expedientes import state


@pytest.fixture(autouse=True)
def _checkpoint_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(state, "CKPT_PATH", str(tmp_path / "state" / "run_state.json"))


def test_save_merges_and_clear_removes() -> None:
    assert state.load_checkpoint() is None

    state.save_checkpoint(run_id="r1", processed_ids=["1"])
    state.save_checkpoint(processed_ids=["1", "2"])

    payload = state.load_checkpoint()
    assert payload["run_id"] == "r1"
    assert payload["processed_ids"] == ["1", "2"]
    assert "saved_at_ts" in payload

    state.clear_checkpoint()
    state.clear_checkpoint()
    assert state.load_checkpoint() is None


def test_processed_ids_are_scoped_to_workbook(tmp_path: Path) -> None:
    book = tmp_path / "book.xlsx"
    state.record_processed(str(book), ["1002", "1001", "1001"], run_id="r1")

    assert state.processed_ids_for(str(book)) == {"1001", "1002"}
    assert state.load_checkpoint()["processed_ids"] == ["1001", "1002"]
    assert state.processed_ids_for(str(tmp_path / "other.xlsx")) == set()


def test_corrupt_checkpoint_is_ignored() -> None:
    path = Path(state.CKPT_PATH)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    assert state.load_checkpoint() is None
    assert state.processed_ids_for("book.xlsx") == set()
