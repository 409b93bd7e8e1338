from __future__ import annotations

import json
import os
import threading
import time
from typing import Any, Dict, Generator, List

from flask import Flask, Response, jsonify, request, send_file

from app.expedientes import config
from app.expedientes.config_validation import validate_runtime_config
from app.expedientes.credentials import CredentialsStore
from app.expedientes.errors import AlreadyRunningError, AppError, ValidationError
from app.expedientes.export_excel import export_report_to_excel, load_latest_report, report_to_csv
from app.expedientes.healthcheck import run_health_checks
from app.expedientes.logging_utils import _run_event
from app.expedientes.models import ReleaseLogicConfig
from app.expedientes.run import ProgressEvent, RunOptions, RunOrchestrator
from app.expedientes.utils import (
    ensure_dirs,
    get_current_log_path,
    load_json_file,
    log_line,
    setup_run_logger,
)
from app.expedientes.workbook import get_file_info, validate_workbook

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")

# Initialise storage paths on import so WSGI entrypoints also have them.
ensure_dirs()

_PROGRESS_LOCK = threading.Lock()
app.config.setdefault("PROGRESS_EVENTS", [])
app.config.setdefault("LAST_ERROR", None)


def _credentials_store() -> CredentialsStore:
    return app.config.get("CREDENTIALS_STORE") or CredentialsStore()


def _get_orchestrator() -> RunOrchestrator:
    orchestrator = app.config.get("ORCHESTRATOR")
    if orchestrator is None:
        store = _credentials_store()
        orchestrator = RunOrchestrator(
            credentials_provider=store.get_credentials,
            progress_callback=_record_progress,
        )
        app.config["ORCHESTRATOR"] = orchestrator
    return orchestrator


def _record_progress(event: ProgressEvent) -> None:
    with _PROGRESS_LOCK:
        app.config["PROGRESS_EVENTS"].append(event.to_dict())


def _progress_since(index: int) -> List[Dict[str, Any]]:
    with _PROGRESS_LOCK:
        return list(app.config["PROGRESS_EVENTS"][index:])


def _reset_progress() -> None:
    with _PROGRESS_LOCK:
        app.config["PROGRESS_EVENTS"] = []
    app.config["LAST_ERROR"] = None


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _optional_number(value: Any, cast):
    if value in (None, ""):
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid numeric value", value=value)


def _tail_log_generator() -> Generator[str, None, None]:
    """Yield Server-Sent Event messages for appended log lines."""

    ensure_dirs()
    current_path = get_current_log_path()
    current_path.parent.mkdir(parents=True, exist_ok=True)
    current_path.touch(exist_ok=True)

    handle = current_path.open("r", encoding="utf-8", errors="ignore")
    handle.seek(0, os.SEEK_END)

    try:
        while True:
            latest_path = get_current_log_path()
            if latest_path != current_path:
                handle.close()
                current_path = latest_path
                current_path.parent.mkdir(parents=True, exist_ok=True)
                current_path.touch(exist_ok=True)
                handle = current_path.open("r", encoding="utf-8", errors="ignore")
                handle.seek(0, os.SEEK_END)

            line = handle.readline()
            if line:
                yield f"data: {line.rstrip()}\n\n"
            else:
                time.sleep(1)
                yield ": heartbeat\n\n"
    finally:
        handle.close()


def _progress_stream_generator() -> Generator[str, None, None]:
    """Yield buffered progress events as SSE until the final event is sent."""

    index = 0
    while True:
        events = _progress_since(index)
        for event in events:
            index += 1
            yield f"data: {json.dumps(event)}\n\n"
            if event.get("final"):
                return
        if not events:
            if not _get_orchestrator().is_running() and app.config.get("LAST_ERROR"):
                yield f"event: error\ndata: {json.dumps(app.config['LAST_ERROR'])}\n\n"
                return
            time.sleep(1)
            yield ": heartbeat\n\n"


@app.get("/")
def index() -> Response:
    return jsonify(
        {
            "name": "expedientes",
            "portal": config.PORTAL_BASE_URL,
            "running": _get_orchestrator().is_running(),
        }
    )


@app.post("/api/process")
def api_process() -> Response:
    """Start a reconciliation run for a workbook in a background thread."""

    payload = _json_body()
    try:
        validate_runtime_config("ui")
    except ValueError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 400

    orchestrator = _get_orchestrator()
    if orchestrator.is_running():
        error = AlreadyRunningError("Another processing operation is already running")
        return jsonify({"ok": False, **error.to_dict()}), 409

    try:
        file_path = str(payload.get("file_path") or "").strip()
        validate_workbook(file_path)
        release_config = ReleaseLogicConfig.from_mapping(payload)
        options = RunOptions(
            delay_between_records=_optional_number(payload.get("delay"), float),
            writeback_batch_size=_optional_number(payload.get("batch_size"), int),
            resume=_as_bool(payload.get("resume")),
            generate_report=payload.get("generate_report", True) is not False,
            license_token=payload.get("license_token") or None,
        )
    except ValidationError as exc:
        return jsonify({"ok": False, **exc.to_dict()}), 400

    if not orchestrator.try_begin():
        error = AlreadyRunningError("Another processing operation is already running")
        return jsonify({"ok": False, **error.to_dict()}), 409

    def _run() -> None:
        with app.app_context():
            try:
                result = orchestrator.process_workbook(
                    file_path, release_config, options, reserved=True
                )
                app.config["LAST_RESULT"] = result.to_dict()
            except AppError as exc:
                app.config["LAST_ERROR"] = exc.to_dict()
                log_line(f"Processing thread failed: {exc.code}: {exc}")
            except Exception as exc:  # noqa: BLE001
                app.config["LAST_ERROR"] = {"error": str(exc), "code": "INTERNAL_ERROR"}
                log_line(f"Processing thread failed: {exc}")

    # The thread owns the run slot once started and releases it when the run ends.
    try:
        setup_run_logger()
        _reset_progress()
        app.config["LAST_PARAMS"] = {"file_path": file_path, **release_config.to_dict()}
        thread = threading.Thread(target=_run, daemon=True)
        app.config["RUN_THREAD"] = thread
        thread.start()
    except Exception:
        orchestrator.end()
        raise
    _run_event("api", step="process_started", file_path=file_path)
    return jsonify({"ok": True, "started": True, "file_path": file_path}), 202


@app.get("/api/progress")
def api_progress() -> Response:
    try:
        since = max(0, int(request.args.get("since", 0)))
    except ValueError:
        since = 0
    orchestrator = _get_orchestrator()
    return jsonify(
        {
            "ok": True,
            "running": orchestrator.is_running(),
            "state": orchestrator.state.value,
            "events": _progress_since(since),
            "last_error": app.config.get("LAST_ERROR"),
        }
    )


@app.get("/api/progress/stream")
def api_progress_stream() -> Response:
    response = Response(_progress_stream_generator(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


@app.get("/api/runs/latest")
def api_runs_latest() -> Response:
    """Return the result of the last finished run."""

    summary = load_json_file(config.SUMMARY_FILE)
    if not summary:
        return jsonify({"ok": False, "error": "no runs"}), 404
    return jsonify({"ok": True, "run": summary})


@app.post("/api/workbook/validate")
def api_workbook_validate() -> Response:
    file_path = str(_json_body().get("file_path") or "").strip()
    try:
        validation = validate_workbook(file_path)
        info = get_file_info(file_path)
    except ValidationError as exc:
        return jsonify({"ok": False, **exc.to_dict()}), 400
    return jsonify({"ok": True, "validation": validation, "info": info})


@app.get("/api/credentials")
def api_credentials_get() -> Response:
    credentials = _credentials_store().get_credentials()
    return jsonify(
        {
            "ok": True,
            "configured": credentials is not None,
            "username": credentials.username if credentials else None,
        }
    )


@app.post("/api/credentials")
def api_credentials_post() -> Response:
    payload = _json_body()
    try:
        credentials = _credentials_store().save_credentials(
            str(payload.get("username") or ""), str(payload.get("password") or "")
        )
    except ValidationError as exc:
        return jsonify({"ok": False, **exc.to_dict()}), 400
    return jsonify({"ok": True, "configured": True, "username": credentials.username})


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, filesystem and browser."""

    result = run_health_checks(entrypoint="ui")
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


@app.get("/api/exports/latest.xlsx")
def api_export_latest_xlsx() -> Response:
    report = load_latest_report()
    if report is None:
        return jsonify({"ok": False, "error": "no report"}), 404
    path = export_report_to_excel(report)
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


@app.get("/api/exports/latest.csv")
def api_export_latest_csv() -> Response:
    report = load_latest_report()
    if report is None:
        return jsonify({"ok": False, "error": "no report"}), 404
    path = report_to_csv(report)
    return send_file(
        path, mimetype="text/csv", as_attachment=True, download_name=os.path.basename(path)
    )


@app.get("/logs/stream")
def logs_stream() -> Response:
    response = Response(_tail_log_generator(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8080)
