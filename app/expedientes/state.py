"""Helpers for persisting and restoring run checkpoints."""

from __future__ import annotations

import json
import os
import time
from typing import Dict, Iterable, Optional, Set

from . import config
from .utils import log_line


CKPT_PATH = os.environ.get("RUN_STATE_PATH", str(config.RUN_STATE_FILE))


def load_checkpoint() -> Optional[Dict]:
    """Load the persisted checkpoint JSON if present."""

    if not os.path.exists(CKPT_PATH):
        return None
    try:
        with open(CKPT_PATH, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except Exception:
        return None


def save_checkpoint(**kwargs) -> None:
    """Merge ``kwargs`` into the checkpoint on disk."""

    os.makedirs(os.path.dirname(CKPT_PATH) or ".", exist_ok=True)
    state = load_checkpoint() or {}
    state.update(kwargs)
    state["saved_at_ts"] = time.time()
    with open(CKPT_PATH, "w", encoding="utf-8") as handle:
        json.dump(state, handle, ensure_ascii=False, indent=2, default=str)


def clear_checkpoint() -> None:
    """Remove the checkpoint file if it exists."""

    try:
        os.remove(CKPT_PATH)
    except FileNotFoundError:
        pass


def _workbook_key(file_path: str) -> str:
    return os.path.abspath(str(file_path))


def record_processed(file_path: str, case_ids: Iterable[str], *, run_id: str) -> None:
    """Store the ids already handled for ``file_path`` in the current run."""

    save_checkpoint(
        workbook=_workbook_key(file_path),
        run_id=run_id,
        processed_ids=sorted(set(case_ids)),
    )


def processed_ids_for(file_path: str) -> Set[str]:
    """Return ids recorded for ``file_path``; empty when the checkpoint is for another file."""

    state = load_checkpoint()
    if not state:
        return set()
    if state.get("workbook") != _workbook_key(file_path):
        log_line("[STATE] Checkpoint belongs to another workbook; ignoring it.")
        return set()
    return {str(case_id) for case_id in state.get("processed_ids") or []}


__all__ = [
    "CKPT_PATH",
    "load_checkpoint",
    "save_checkpoint",
    "clear_checkpoint",
    "record_processed",
    "processed_ids_for",
]
