"""Controller for lifecycle CLI commands."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from run_command_handler.config import (
    HandlerEnvironment,
    HandlerSettings,
    RuntimeSettings,
    load_handler_settings,
)
from run_command_handler.errors import (
    ExecutionError,
    FilesystemError,
    HandlerError,
    SettingsError,
)
from run_command_handler.http.credentials import IdentityTokenClient
from run_command_handler.http.fetcher import ScriptDownloader
from run_command_handler.lifecycle import InvocationContext, LifecycleOperation, OperationOutcome
from run_command_handler.runner import ExecutionRunner, tail
from run_command_handler.seqnum import NO_SEQ_NUM, find_latest_seq_num
from run_command_handler.status import StatusReport, StatusType, write_status

logger = logging.getLogger(__name__)

SEQ_NUM_ENV_VAR = "ConfigSequenceNumber"
LOG_FILE_NAME = "handler.log"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(process)d] %(message)s"


@dataclass(slots=True)
class LifecycleCommand:
    """CLI input for one lifecycle invocation."""

    operation: str
    seq_num: int | None = None
    environment_path: Path | None = None
    data_dir: Path | None = None


@dataclass(slots=True)
class LifecycleResult:
    success: bool
    lines: list[str] = field(default_factory=list)
    status_path: Path | None = None


class HandlerCliController:
    """Maps a lifecycle verb to gate, acquire, run and status report."""

    def __init__(
        self,
        *,
        http_client: httpx.Client | None = None,
        runner: ExecutionRunner | None = None,
        configure_logs: bool = True,
    ) -> None:
        self._http_client = http_client
        self._runner = runner or ExecutionRunner()
        self._configure_logs = configure_logs

    def run(self, command: LifecycleCommand) -> LifecycleResult:
        operation = LifecycleOperation.from_verb(command.operation)
        try:
            runtime = RuntimeSettings.from_env()
            environment = HandlerEnvironment.load(
                command.environment_path or runtime.environment_path,
                data_folder=command.data_dir or runtime.data_dir,
            )
            if self._configure_logs:
                configure_logging(environment.log_folder, runtime.log_level)
            seq_num = _resolve_seq_num(command.seq_num, environment)
        except (HandlerError, ValueError) as error:
            return LifecycleResult(success=False, lines=[f"{operation.verb} failed: {error}"])

        try:
            return self._dispatch(operation, runtime, environment, seq_num)
        except HandlerError as error:
            logger.error("%s status could not be reported: %s", operation.verb, error)
            return LifecycleResult(success=False, lines=[f"{operation.verb} failed: {error}"])

    def _dispatch(
        self,
        operation: LifecycleOperation,
        runtime: RuntimeSettings,
        environment: HandlerEnvironment,
        seq_num: int,
    ) -> LifecycleResult:
        logger.info("Handler %s invoked with sequence number %d", operation.verb, seq_num)
        reports_status = operation.should_report_status and seq_num != NO_SEQ_NUM
        if operation.should_report_status and not reports_status:
            logger.warning("No sequence number available, %s status not reported", operation.verb)

        status_path: Path | None = None

        def report_started() -> None:
            nonlocal status_path
            if reports_status:
                status_path = self._report(
                    environment,
                    seq_num,
                    StatusReport(
                        operation=operation.status_name,
                        status=StatusType.TRANSITIONING,
                        message=f"{operation.status_name} in progress",
                    ),
                )

        with ScriptDownloader(
            client=self._http_client,
            timeout_seconds=runtime.download_timeout_seconds,
        ) as downloader:
            try:
                settings = _load_settings(operation, environment, seq_num)
                outcome = operation.invoke(
                    InvocationContext(
                        seq_num=seq_num,
                        environment=environment,
                        settings=settings,
                        downloader=downloader,
                        token_client=IdentityTokenClient(
                            downloader.client,
                            endpoint=runtime.identity_endpoint,
                            resource=runtime.identity_resource,
                        ),
                        runner=self._runner,
                        on_start=report_started,
                    ),
                )
            except HandlerError as error:
                logger.error("%s failed: %s", operation.verb, error)
                if reports_status:
                    status_path = self._report(
                        environment,
                        seq_num,
                        _error_report(operation, error),
                    )
                return LifecycleResult(
                    success=False,
                    lines=[f"{operation.verb} failed: {error}"],
                    status_path=status_path,
                )

        logger.info("%s finished: %s", operation.verb, outcome.message)
        if outcome.skipped:
            return LifecycleResult(success=True, lines=[outcome.message])
        if reports_status:
            status_path = self._report(environment, seq_num, _success_report(operation, outcome))
        return LifecycleResult(
            success=True,
            lines=[outcome.message],
            status_path=status_path,
        )

    @staticmethod
    def _report(environment: HandlerEnvironment, seq_num: int, report: StatusReport) -> Path:
        path = write_status(environment.status_folder, seq_num, report)
        logger.debug("Wrote %s status to %s", report.status.value, path)
        return path


def configure_logging(log_folder: Path, level: str) -> None:
    """Attach a file handler for ``<log_folder>/handler.log`` to the root logger once."""

    log_path = (log_folder / LOG_FILE_NAME).resolve()
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path:
            return
    try:
        log_folder.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as error:
        raise FilesystemError(f"Failed to open handler log in {log_folder}: {error}") from error
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)


def _resolve_seq_num(explicit: int | None, environment: HandlerEnvironment) -> int:
    if explicit is not None:
        if explicit < 0:
            raise ValueError(f"Sequence number must be >= 0, got {explicit}.")
        return explicit
    raw = os.getenv(SEQ_NUM_ENV_VAR, "").strip()
    if raw:
        try:
            value = int(raw)
        except ValueError:
            value = NO_SEQ_NUM
        if value >= 0:
            return value
        logger.warning("Ignoring invalid %s value %r", SEQ_NUM_ENV_VAR, raw)
    return find_latest_seq_num(environment.config_folder)


def _load_settings(
    operation: LifecycleOperation,
    environment: HandlerEnvironment,
    seq_num: int,
) -> HandlerSettings | None:
    if operation is not LifecycleOperation.ENABLE:
        return None
    if seq_num == NO_SEQ_NUM:
        raise SettingsError(f"No settings found in {environment.config_folder}.")
    return load_handler_settings(environment.config_folder, seq_num)


def _success_report(operation: LifecycleOperation, outcome: OperationOutcome) -> StatusReport:
    stdout = stderr = None
    if outcome.execution is not None:
        stdout = tail(outcome.execution.stdout_path)
        stderr = tail(outcome.execution.stderr_path)
    return StatusReport(
        operation=operation.status_name,
        status=StatusType.SUCCESS,
        message=outcome.message,
        stdout=stdout,
        stderr=stderr,
    )


def _error_report(operation: LifecycleOperation, error: HandlerError) -> StatusReport:
    stdout = stderr = None
    if isinstance(error, ExecutionError):
        stdout = tail(error.stdout_path)
        stderr = tail(error.stderr_path)
    return StatusReport(
        operation=operation.status_name,
        status=StatusType.ERROR,
        message=f"{operation.status_name} failed: {error}",
        stdout=stdout,
        stderr=stderr,
    )
