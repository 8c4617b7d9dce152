"""Resolve a script source to a runnable file on local disk."""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path
from urllib.parse import unquote, urlsplit

from run_command_handler.config import ProtectedSettings, ScriptSource
from run_command_handler.decoder import decode_script
from run_command_handler.errors import FilesystemError, SettingsError
from run_command_handler.http.credentials import IdentityTokenClient, resolve_auth_strategies
from run_command_handler.http.fetcher import ScriptDownloader, redact_uri

logger = logging.getLogger(__name__)

SCRIPT_FILE_NAME = "script.sh"


class ScriptAcquirer:
    """Writes inline, encoded or remote scripts into a destination directory."""

    def __init__(
        self,
        *,
        downloader: ScriptDownloader,
        token_client: IdentityTokenClient,
        protected: ProtectedSettings | None = None,
    ) -> None:
        self._downloader = downloader
        self._token_client = token_client
        self._protected = protected or ProtectedSettings()

    def resolve(self, source: ScriptSource, destination_dir: Path) -> Path:
        _ensure_dir(destination_dir)

        if source.script:
            path = _write_atomic(destination_dir / SCRIPT_FILE_NAME, source.script)
            logger.info("Saved inline script to %s", path)
        elif source.encoded_script:
            text, info = decode_script(source.encoded_script)
            logger.info("Decoded encoded script (%s)", info)
            path = _write_atomic(destination_dir / SCRIPT_FILE_NAME, text)
        elif source.script_uri:
            path = destination_dir / script_file_name(source.script_uri)
            strategies = resolve_auth_strategies(self._protected, self._token_client)
            logger.info(
                "Downloading script from %s (strategies: %s)",
                redact_uri(source.script_uri),
                ", ".join(strategy.name for strategy in strategies),
            )
            self._downloader.download(source.script_uri, path, strategies)
        else:
            raise SettingsError("Script source is empty.")

        _make_executable(path)
        return path


def script_file_name(uri: str) -> str:
    """Final path segment of ``uri``, ignoring query and fragment."""

    name = unquote(urlsplit(uri).path.rsplit("/", 1)[-1])
    if (
        not name
        or name in {".", ".."}
        or any(char in name for char in ("/", "\\", "\x00"))
    ):
        raise SettingsError(f"Cannot derive a file name from scriptUri {redact_uri(uri)}")
    return name


def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise FilesystemError(f"Failed to create directory {path}: {error}") from error


def _write_atomic(path: Path, text: str) -> Path:
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".part", dir=path.parent)
    except OSError as error:
        raise FilesystemError(f"Failed to create script file in {path.parent}: {error}") from error

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        os.replace(tmp_path, path)
    except OSError as error:
        raise FilesystemError(f"Failed to write script file {path}: {error}") from error
    finally:
        tmp_path.unlink(missing_ok=True)
    return path


def _make_executable(path: Path) -> None:
    try:
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
    except OSError as error:
        raise FilesystemError(f"Failed to mark {path} executable: {error}") from error
