"""Batch runner: workbook in, portal reconciliation, workbook and report out."""

from __future__ import annotations

import argparse
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from . import config, state, telemetry
from .config_validation import validate_runtime_config
from .credentials import CredentialsStore
from .error_codes import FATAL_RUN_CODES
from .errors import (
    AlreadyRunningError,
    AppError,
    CredentialsNotConfiguredError,
    LicenseError,
    ValidationError,
)
from .license_client import license_gate as default_license_gate
from .logging_utils import _run_event
from .models import CaseRecord, Credentials, ReleaseLogicConfig, SearchOutcome
from .report import build_report
from .session import PortalSession
from .utils import ensure_dirs, log_line, save_json_file, setup_run_logger, short_error_message
from .workbook import (
    read_records,
    restore_written_results,
    validate_workbook_path,
    write_back_records,
)


class RunState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunOptions:
    """Per-run knobs; ``None`` falls back to the configured default."""

    delay_between_records: Optional[float] = None
    writeback_batch_size: Optional[int] = None
    resume: bool = False
    generate_report: bool = True
    report_type: str = "summary"
    license_token: Optional[str] = None

    def resolved_delay(self) -> float:
        value = self.delay_between_records
        if value is None:
            value = config.DELAY_BETWEEN_RECORDS_SECONDS
        return max(0.0, float(value))

    def resolved_batch_size(self) -> int:
        value = self.writeback_batch_size
        if value is None:
            value = config.WRITEBACK_BATCH_SIZE
        return max(1, int(value))


@dataclass
class ProgressEvent:
    message: str
    detail: str = ""
    progress: int = 0
    stats: Dict[str, int] = field(default_factory=dict)
    final: bool = False
    current: int = 0
    total: int = 0
    current_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "detail": self.detail,
            "progress": self.progress,
            "stats": dict(self.stats),
            "final": self.final,
            "current": self.current,
            "total": self.total,
            "current_id": self.current_id,
        }


@dataclass
class RunResult:
    success: bool
    processed_count: int
    success_count: int
    error_count: int
    errors: List[Dict[str, str]]
    stats: Dict[str, int]
    report: Optional[Dict[str, Any]] = None
    file_path: Optional[str] = None
    records: List[Dict[str, Any]] = field(default_factory=list)
    resumed_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "processed_count": self.processed_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "errors": list(self.errors),
            "stats": dict(self.stats),
            "report": self.report,
            "file_path": self.file_path,
            "records": list(self.records),
            "resumed_count": self.resumed_count,
        }


ProgressCallback = Callable[[ProgressEvent], None]
CheckpointHook = Callable[[List[CaseRecord], bool], None]


class RunOrchestrator:
    """Drive one ``PortalSession`` through a batch of case records.

    Only one run may be active per orchestrator; a second call while a run
    is in flight raises ``AlreadyRunningError``.
    """

    def __init__(
        self,
        session: Optional[PortalSession] = None,
        *,
        credentials_provider: Optional[Callable[[], Optional[Credentials]]] = None,
        license_gate: Callable[[Optional[str]], bool] = default_license_gate,
        progress_callback: Optional[ProgressCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._credentials_provider = credentials_provider or CredentialsStore().get_credentials
        self._session = session or PortalSession(credentials_provider=self._credentials_provider)
        self._license_gate = license_gate
        self._progress_callback = progress_callback
        self._sleep = sleep
        self._lock = threading.Lock()
        self.state = RunState.IDLE

    @property
    def session(self) -> PortalSession:
        return self._session

    def is_running(self) -> bool:
        return self._lock.locked()

    def try_begin(self) -> bool:
        """Claim the run slot without starting work; pair with ``end()``."""

        return self._lock.acquire(blocking=False)

    def end(self) -> None:
        if self._lock.locked():
            self._lock.release()

    def set_release_config(self, release_config: ReleaseLogicConfig) -> None:
        self._session.set_release_config(release_config)

    # -- public entrypoints --------------------------------------------

    def process_workbook(
        self,
        file_path: str,
        release_config: Optional[ReleaseLogicConfig] = None,
        options: Optional[RunOptions] = None,
        *,
        reserved: bool = False,
    ) -> RunResult:
        """Reconcile every case in ``file_path`` and write results back to it.

        With ``reserved=True`` the caller already holds the run slot from
        ``try_begin()``; it is released when the run ends either way.
        """

        if not reserved and not self.try_begin():
            raise AlreadyRunningError("Another processing operation is already running")
        try:
            return self._process_workbook(file_path, release_config, options or RunOptions())
        finally:
            self.end()

    def process_records(
        self,
        records: Sequence[CaseRecord],
        release_config: Optional[ReleaseLogicConfig] = None,
        options: Optional[RunOptions] = None,
    ) -> RunResult:
        """Reconcile an in-memory list of records without touching any workbook."""

        if not self.try_begin():
            raise AlreadyRunningError("Another processing operation is already running")
        try:
            return self._process_records(list(records), release_config, options or RunOptions())
        finally:
            self.end()

    # -- workbook flow -------------------------------------------------

    def _process_workbook(
        self, file_path: str, release_config: Optional[ReleaseLogicConfig], options: RunOptions
    ) -> RunResult:
        self.state = RunState.INITIALIZING
        _run_event("process", step="started", file_path=str(file_path))
        try:
            path = validate_workbook_path(file_path)
            credentials = self._preflight(options)
            records = read_records(path)

            already_done: Set[str] = set()
            if options.resume:
                already_done = state.processed_ids_for(str(path))
                if already_done:
                    log_line(f"[RUN] Resuming; skipping {len(already_done)} already processed case(s).")
            pending = [record for record in records if record.case_id not in already_done]
            resumed = len(records) - len(pending)
            if resumed:
                restored = restore_written_results(
                    path, [record for record in records if record.case_id in already_done]
                )
                log_line(f"[RUN] Restored {restored} of {resumed} earlier result(s) from the workbook.")

            run_telemetry = telemetry.RunTelemetry("workbook")
            written_ids = set(already_done)

            def checkpoint(batch: List[CaseRecord], is_last: bool) -> None:
                self._write_batch(path, batch, is_last=is_last)
                written_ids.update(record.case_id for record in batch)
                try:
                    state.record_processed(str(path), written_ids, run_id=run_telemetry.run_id)
                except Exception as exc:  # noqa: BLE001
                    log_line(f"[RUN][WARN] Failed to persist checkpoint: {exc}")

            errors = self._run_session(
                pending,
                release_config,
                options,
                credentials=credentials,
                run_telemetry=run_telemetry,
                checkpoint=checkpoint,
            )

            result = self._finalize(
                records,
                errors,
                options,
                run_telemetry=run_telemetry,
                metadata={
                    "source_file": str(path),
                    "total_errors": len(errors),
                    "resumed_records": resumed,
                },
                file_path=str(path),
                resumed=resumed,
            )
            state.clear_checkpoint()
            return result
        except Exception as exc:  # noqa: BLE001
            self._fail(exc, file_path=str(file_path))
            raise

    def _process_records(
        self,
        records: List[CaseRecord],
        release_config: Optional[ReleaseLogicConfig],
        options: RunOptions,
    ) -> RunResult:
        self.state = RunState.INITIALIZING
        _run_event("process", step="started", records=len(records))
        try:
            if not records:
                raise ValidationError("No expedientes to process", field="records")
            credentials = self._preflight(options)
            run_telemetry = telemetry.RunTelemetry("records")
            errors = self._run_session(
                records,
                release_config,
                options,
                credentials=credentials,
                run_telemetry=run_telemetry,
                checkpoint=None,
            )
            return self._finalize(
                records,
                errors,
                options,
                run_telemetry=run_telemetry,
                metadata={"total_errors": len(errors)},
                file_path=None,
            )
        except Exception as exc:  # noqa: BLE001
            self._fail(exc, records=len(records))
            raise

    # -- shared steps --------------------------------------------------

    def _preflight(self, options: RunOptions) -> Credentials:
        if not self._license_gate(options.license_token):
            raise LicenseError("License is not valid; processing is disabled")
        credentials = self._credentials_provider()
        if credentials is None or not credentials.is_complete():
            raise CredentialsNotConfiguredError("Portal credentials are not configured")
        return credentials

    def _run_session(
        self,
        records: List[CaseRecord],
        release_config: Optional[ReleaseLogicConfig],
        options: RunOptions,
        *,
        credentials: Credentials,
        run_telemetry: telemetry.RunTelemetry,
        checkpoint: Optional[CheckpointHook],
    ) -> List[Dict[str, str]]:
        if not records:
            log_line("[RUN] Nothing left to process; skipping browser session.")
            return []
        if release_config is not None:
            self._session.set_release_config(release_config)
        self._session.reset_stats()
        try:
            self._session.initialize()
            self._session.login(credentials)
            self.state = RunState.RUNNING
            return self._loop(records, options, run_telemetry=run_telemetry, checkpoint=checkpoint)
        finally:
            self._close_session()

    def _loop(
        self,
        records: List[CaseRecord],
        options: RunOptions,
        *,
        run_telemetry: telemetry.RunTelemetry,
        checkpoint: Optional[CheckpointHook],
    ) -> List[Dict[str, str]]:
        total = len(records)
        delay = options.resolved_delay()
        batch_size = options.resolved_batch_size()
        errors: List[Dict[str, str]] = []
        batch: List[CaseRecord] = []

        for index, record in enumerate(records, start=1):
            try:
                outcome = self._session.search_record(record.case_id, record.saved_cost)
            except Exception as exc:  # noqa: BLE001
                outcome = SearchOutcome.failure(record.case_id, short_error_message(exc), phase="search")

            if outcome.is_successful():
                record.mark_processed(outcome)
            else:
                message = outcome.error or "Unknown error"
                record.mark_failed(message, processing_time_ms=outcome.processing_time_ms)
                errors.append({"id": record.case_id, "error": message})

            run_telemetry.add(record, phase=outcome.error_phase)

            percentage = round(index / total * 100)
            self._emit(
                ProgressEvent(
                    message=f"Revisando expediente {index} de {total} ({percentage}%)",
                    detail=f"Expediente: {record.case_id}",
                    progress=percentage,
                    stats=self._session.stats.to_dict(),
                    current=index,
                    total=total,
                    current_id=record.case_id,
                )
            )

            batch.append(record)
            is_last = index == total
            if checkpoint is not None and (len(batch) >= batch_size or is_last):
                try:
                    checkpoint(batch, is_last)
                    batch = []
                except AppError:
                    raise
                except OSError as exc:
                    if is_last:
                        raise
                    log_line(f"[RUN][WARN] Write-back deferred to next checkpoint: {exc}")

            if not is_last and delay > 0:
                self._sleep(delay)

        return errors

    def _write_batch(self, path: Path, batch: List[CaseRecord], *, is_last: bool) -> None:
        updated = write_back_records(path, batch)
        _run_event("checkpoint", rows=updated, batch=len(batch), last=is_last)

    def _finalize(
        self,
        records: List[CaseRecord],
        errors: List[Dict[str, str]],
        options: RunOptions,
        *,
        run_telemetry: telemetry.RunTelemetry,
        metadata: Dict[str, Any],
        file_path: Optional[str],
        resumed: int = 0,
    ) -> RunResult:
        """Build the report and summary over ``records``.

        ``resumed`` counts records carried over from an earlier run rather than
        searched now; they are part of the totals but not of the reviewed count.
        """

        self.state = RunState.FINALIZING
        reviewed = len(records) - resumed
        report = None
        if options.generate_report:
            report = build_report(records, metadata, report_type=options.report_type)

        stats = self._session.stats.to_dict()
        result = RunResult(
            success=True,
            processed_count=len(records),
            success_count=sum(1 for record in records if record.is_completed()),
            error_count=len(errors),
            errors=errors,
            stats=stats,
            report=report.to_dict() if report else None,
            file_path=file_path,
            records=[record.to_dict() for record in records],
            resumed_count=resumed,
        )

        try:
            run_telemetry.finalize(
                {
                    "file_path": file_path,
                    "statistics": report.statistics.to_dict() if report else None,
                    "stats": stats,
                }
            )
        except Exception as exc:  # noqa: BLE001
            log_line(f"[RUN][WARN] Failed to write run telemetry: {exc}")
        try:
            save_json_file(config.SUMMARY_FILE, result.to_dict())
        except Exception as exc:  # noqa: BLE001
            log_line(f"[RUN][WARN] Failed to save run summary: {exc}")

        self._emit(
            ProgressEvent(
                message=f"Proceso finalizado. Se revisaron {reviewed} expedientes.",
                progress=100,
                stats=stats,
                final=True,
                current=reviewed,
                total=reviewed,
            )
        )
        self.state = RunState.COMPLETED
        _run_event(
            "process",
            step="completed",
            processed=result.processed_count,
            succeeded=result.success_count,
            errors=result.error_count,
        )
        return result

    def _emit(self, event: ProgressEvent) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(event)
        except Exception as exc:  # noqa: BLE001
            log_line(f"[RUN][WARN] Progress callback failed: {exc}")

    def _close_session(self) -> None:
        try:
            self._session.close_session()
        except Exception as exc:  # noqa: BLE001
            log_line(f"[RUN][WARN] Error closing browser session: {exc}")

    def _fail(self, exc: BaseException, **fields: Any) -> None:
        self.state = RunState.FAILED
        code = exc.code if isinstance(exc, AppError) else None
        _run_event(
            "process_failed",
            error=short_error_message(exc),
            code=code,
            fatal=code in FATAL_RUN_CODES,
            **fields,
        )


def _cli_entrypoint(argv: Optional[List[str]] = None) -> int:  # pragma: no cover
    parser = argparse.ArgumentParser(description="Reconcile expediente costs against the portal")
    parser.add_argument("workbook", help="Path to the .xlsx workbook")
    parser.add_argument("--margin-logic", action="store_true", default=config.MARGIN_LOGIC_DEFAULT)
    parser.add_argument("--superior-logic", action="store_true", default=config.SUPERIOR_LOGIC_DEFAULT)
    parser.add_argument("--delay", type=float, default=None, help="Seconds between records")
    parser.add_argument("--batch-size", type=int, default=None, help="Records per write-back")
    parser.add_argument("--headless", action="store_true", default=config.HEADLESS)
    parser.add_argument("--resume", action="store_true", default=config.RESUME_DEFAULT)
    parser.add_argument("--license-token", default=None)
    args = parser.parse_args(argv)

    ensure_dirs()
    validate_runtime_config("cli")
    setup_run_logger()

    store = CredentialsStore()
    session = PortalSession(credentials_provider=store.get_credentials, headless=args.headless)
    orchestrator = RunOrchestrator(
        session,
        credentials_provider=store.get_credentials,
        progress_callback=lambda event: log_line(f"[PROGRESS] {event.message}"),
    )
    release_config = ReleaseLogicConfig(
        margin_logic=args.margin_logic, superior_logic=args.superior_logic
    )
    options = RunOptions(
        delay_between_records=args.delay,
        writeback_batch_size=args.batch_size,
        resume=args.resume,
        license_token=args.license_token,
    )
    try:
        result = orchestrator.process_workbook(args.workbook, release_config, options)
    except AppError as exc:
        log_line(f"[RUN] Aborted: {exc.code}: {exc}")
        return 1
    log_line(
        f"[RUN] Done: processed={result.processed_count} "
        f"succeeded={result.success_count} errors={result.error_count}"
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(_cli_entrypoint())

__all__ = [
    "ProgressEvent",
    "RunOptions",
    "RunOrchestrator",
    "RunResult",
    "RunState",
    "_cli_entrypoint",
]
