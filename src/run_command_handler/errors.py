"""Error taxonomy shared by the handler pipeline."""

from __future__ import annotations

from pathlib import Path


class HandlerError(RuntimeError):
    """Base class for failures surfaced to the lifecycle dispatcher."""


class SettingsError(HandlerError):
    """Handler settings or environment are missing or malformed."""


class PersistenceError(HandlerError):
    """Sequence number state could not be read or saved."""


class DecodeError(HandlerError):
    """Encoded script payload is not valid base64 or UTF-8."""


class DecompressError(HandlerError):
    """Encoded script payload carries a gzip marker but cannot be inflated."""


class DownloadError(HandlerError):
    """Remote script could not be fetched with any configured credential."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FilesystemError(HandlerError):
    """Destination files or directories could not be created."""


class ExecutionError(HandlerError):
    """Script failed to start or exited with a non-zero code."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None,
        stdout_path: Path,
        stderr_path: Path,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout_path = stdout_path
        self.stderr_path = stderr_path
