"""The five lifecycle operations invoked by the host agent."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from run_command_handler.acquire import ScriptAcquirer
from run_command_handler.config import HandlerEnvironment, HandlerSettings
from run_command_handler.errors import FilesystemError, SettingsError
from run_command_handler.http.credentials import IdentityTokenClient
from run_command_handler.http.fetcher import ScriptDownloader
from run_command_handler.runner import ExecutionResult, ExecutionRunner
from run_command_handler.seqnum import check_and_save_seq_num

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InvocationContext:
    """Everything one lifecycle invocation needs."""

    seq_num: int
    environment: HandlerEnvironment
    settings: HandlerSettings | None
    downloader: ScriptDownloader
    token_client: IdentityTokenClient
    runner: ExecutionRunner
    on_start: Callable[[], None] | None = None

    def started(self) -> None:
        """Signal that the operation passed its gate and is about to do work."""

        if self.on_start is not None:
            self.on_start()


@dataclass(slots=True)
class OperationOutcome:
    message: str
    skipped: bool = False
    execution: ExecutionResult | None = None


class LifecycleOperation(Enum):
    """Lifecycle verbs with their status-reporting flag."""

    INSTALL = ("install", False)
    ENABLE = ("enable", True)
    DISABLE = ("disable", True)
    UNINSTALL = ("uninstall", False)
    UPDATE = ("update", True)

    def __init__(self, verb: str, should_report_status: bool) -> None:
        self.verb = verb
        self.should_report_status = should_report_status

    @property
    def status_name(self) -> str:
        return self.verb.capitalize()

    @classmethod
    def from_verb(cls, verb: str) -> LifecycleOperation:
        normalized = verb.strip().lower()
        for operation in cls:
            if operation.verb == normalized:
                return operation
        raise ValueError(f"Unsupported lifecycle operation: {verb!r}")

    def invoke(self, context: InvocationContext) -> OperationOutcome:
        logger.info("Running %s for sequence number %d", self.verb, context.seq_num)
        return _HANDLERS[self](context)


def install(context: InvocationContext) -> OperationOutcome:
    context.started()
    _ensure_data_folder(context.environment)
    return OperationOutcome(message="Install succeeded")


def enable(context: InvocationContext) -> OperationOutcome:
    if context.settings is None:
        raise SettingsError("Enable requires handler settings.")
    environment = context.environment
    _ensure_data_folder(environment)

    if check_and_save_seq_num(context.seq_num, environment.seq_num_path):
        return OperationOutcome(
            message=f"Sequence number {context.seq_num} already processed, nothing to do",
            skipped=True,
        )

    context.started()
    work_dir = environment.download_dir(context.seq_num)
    acquirer = ScriptAcquirer(
        downloader=context.downloader,
        token_client=context.token_client,
        protected=context.settings.protected,
    )
    script_path = acquirer.resolve(context.settings.public.source, work_dir)
    cwd = _working_directory(context.settings)
    result = context.runner.run(
        script_path,
        work_dir,
        env=context.settings.environment,
        cwd=cwd,
    )
    return OperationOutcome(message="Enable succeeded", execution=result)


def disable(context: InvocationContext) -> OperationOutcome:
    context.started()
    return OperationOutcome(message="Disable succeeded")


def update(context: InvocationContext) -> OperationOutcome:
    context.started()
    return OperationOutcome(message="Update succeeded")


def uninstall(context: InvocationContext) -> OperationOutcome:
    context.started()
    data_folder = context.environment.data_folder
    try:
        shutil.rmtree(data_folder)
    except FileNotFoundError:
        logger.info("Data folder %s already removed", data_folder)
    except OSError as error:
        raise FilesystemError(f"Failed to remove data folder {data_folder}: {error}") from error
    return OperationOutcome(message="Uninstall succeeded")


def _working_directory(settings: HandlerSettings) -> Path | None:
    if not settings.public.working_directory:
        return None
    path = Path(settings.public.working_directory)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise FilesystemError(f"Failed to create working directory {path}: {error}") from error
    return path


def _ensure_data_folder(environment: HandlerEnvironment) -> None:
    try:
        environment.data_folder.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise FilesystemError(
            f"Failed to create data folder {environment.data_folder}: {error}",
        ) from error


_HANDLERS: dict[LifecycleOperation, Callable[[InvocationContext], OperationOutcome]] = {
    LifecycleOperation.INSTALL: install,
    LifecycleOperation.ENABLE: enable,
    LifecycleOperation.DISABLE: disable,
    LifecycleOperation.UNINSTALL: uninstall,
    LifecycleOperation.UPDATE: update,
}
