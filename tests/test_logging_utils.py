from app.expedientes import logging_utils


def test_run_event_label_and_phase(monkeypatch):
    events: list[str] = []
    monkeypatch.setattr(logging_utils, "log_line", lambda msg: events.append(msg))

    logging_utils._run_event("state", phase="session", kind="summary")

    assert events == ["[EXPEDIENTES][STATE] phase=session kind='summary'"]


def test_run_event_phase_as_label(monkeypatch):
    events: list[str] = []
    monkeypatch.setattr(logging_utils, "log_line", lambda msg: events.append(msg))

    logging_utils._run_event(phase="login", case_id="1001")

    assert events == ["[EXPEDIENTES][LOGIN][1001]"]


def test_run_event_tags_case_and_leads_with_step(monkeypatch):
    events: list[str] = []
    monkeypatch.setattr(logging_utils, "log_line", lambda msg: events.append(msg))

    logging_utils._run_event("error", phase="search", case_id="1002", error="timeout")
    logging_utils._run_event("workbook", step="read", records=3, path="/tmp/x.xlsx")

    assert events == [
        "[EXPEDIENTES][ERROR][1002] phase=search error='timeout'",
        "[EXPEDIENTES][WORKBOOK] step=read path='/tmp/x.xlsx' records=3",
    ]


def test_run_event_never_raises(monkeypatch):
    def _broken(msg):
        raise OSError("disk full")

    monkeypatch.setattr(logging_utils, "log_line", _broken)

    logging_utils._run_event("record", case_id="1001")
