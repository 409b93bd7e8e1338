from __future__ import annotations

from typing import Any, Optional

from .utils import log_line

EVENT_PREFIX = "[EXPEDIENTES]"


def _format_case_event(
    label: str,
    *,
    case_id: Optional[str] = None,
    step: Optional[str] = None,
    phase: Optional[str] = None,
    fields: dict[str, Any],
) -> str:
    tag = f"{EVENT_PREFIX}[{label.upper() or 'EVENT'}]"
    if case_id:
        tag += f"[{case_id}]"
    parts = [f"{name}={value}" for name, value in (("step", step), ("phase", phase)) if value]
    parts.extend(f"{k}={v!r}" for k, v in sorted(fields.items()))
    return f"{tag} {' '.join(parts)}".rstrip()


def _run_event(
    label: str = "",
    *,
    phase: Optional[str] = None,
    case_id: Optional[str] = None,
    step: Optional[str] = None,
    **fields: Any,
) -> None:
    """Log one run event as ``[EXPEDIENTES][LABEL][case] step=.. phase=.. k=v``.

    ``case_id`` tags the line with the expediente it concerns and ``step`` and
    ``phase`` lead the payload unquoted. Without a label the phase names the
    event, e.g. ``_run_event(phase="login")`` logs under ``[LOGIN]``.
    """

    try:
        if not label and phase:
            label, phase = phase, None
        log_line(_format_case_event(label, case_id=case_id, step=step, phase=phase, fields=fields))
    except Exception:
        # Never let logging break a run.
        return


__all__ = ["_run_event"]
