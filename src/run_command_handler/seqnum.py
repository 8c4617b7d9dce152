"""Sequence number gate guaranteeing at-most-once execution per invocation."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from run_command_handler.errors import PersistenceError

logger = logging.getLogger(__name__)

NO_SEQ_NUM = -1
_SETTINGS_FILE_RE = re.compile(r"^(\d+)\.settings$")


def read_seq_num(state_path: Path) -> int:
    """Return the stored sequence number, or ``NO_SEQ_NUM`` when nothing was processed."""

    try:
        raw = state_path.read_text("utf-8")
    except FileNotFoundError:
        return NO_SEQ_NUM
    except OSError as error:
        raise PersistenceError(
            f"failed to read sequence number from {state_path}: {error}",
        ) from error
    try:
        value = int(raw.strip())
    except ValueError as error:
        raise PersistenceError(
            f"failed to read sequence number from {state_path}: invalid content {raw!r}",
        ) from error
    if value < 0:
        raise PersistenceError(
            f"failed to read sequence number from {state_path}: negative value {value}",
        )
    return value


def save_seq_num(seq_num: int, state_path: Path) -> None:
    """Atomically replace the stored sequence number."""

    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{state_path.name}.",
            suffix=".tmp",
            dir=state_path.parent,
        )
    except OSError as error:
        raise PersistenceError(
            f"failed to save sequence number to {state_path}: {error}",
        ) from error

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(str(seq_num))
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, state_path)
    except OSError as error:
        tmp_path.unlink(missing_ok=True)
        raise PersistenceError(
            f"failed to save sequence number to {state_path}: {error}",
        ) from error


def check_and_save_seq_num(current_seq: int, state_path: Path) -> bool:
    """Gate one invocation on its sequence number.

    Returns ``True`` when ``current_seq`` was already processed (equal or lower
    than the stored value) and the invocation must be skipped. Otherwise stores
    ``current_seq`` and returns ``False``.
    """

    if current_seq < 0:
        raise ValueError(f"Sequence number must be >= 0, got {current_seq}.")

    stored = read_seq_num(state_path)
    if current_seq <= stored:
        logger.info(
            "Sequence number %d already processed (stored %d), skipping",
            current_seq,
            stored,
        )
        return True

    save_seq_num(current_seq, state_path)
    logger.info("Saved sequence number %d (previous %d)", current_seq, stored)
    return False


def find_latest_seq_num(config_dir: Path) -> int:
    """Highest ``<n>.settings`` sequence number in the config folder."""

    try:
        names = [entry.name for entry in config_dir.iterdir() if entry.is_file()]
    except FileNotFoundError:
        return NO_SEQ_NUM
    except OSError as error:
        raise PersistenceError(
            f"failed to read sequence number from {config_dir}: {error}",
        ) from error

    latest = NO_SEQ_NUM
    for name in names:
        match = _SETTINGS_FILE_RE.match(name)
        if match:
            latest = max(latest, int(match.group(1)))
    return latest
