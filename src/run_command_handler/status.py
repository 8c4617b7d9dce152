"""Status artifacts consumed by the host agent."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from run_command_handler.errors import FilesystemError


class StatusType(str, Enum):
    TRANSITIONING = "transitioning"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True)
class StatusReport:
    """One ``<seq>.status`` document."""

    operation: str
    status: StatusType
    message: str
    stdout: str | None = None
    stderr: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> list[dict[str, Any]]:
        status: dict[str, Any] = {
            "operation": self.operation,
            "status": self.status.value,
            "formattedMessage": {"lang": "en", "message": self.message},
        }
        substatus = [
            _substatus(name, text, self.status)
            for name, text in (("StdOut", self.stdout), ("StdErr", self.stderr))
            if text is not None
        ]
        if substatus:
            status["substatus"] = substatus
        return [
            {
                "version": 1,
                "timestampUTC": self.timestamp.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "status": status,
            },
        ]


def write_status(status_dir: Path, seq_num: int, report: StatusReport) -> Path:
    """Atomically write ``<status_dir>/<seq_num>.status``."""

    path = status_dir / f"{seq_num}.status"
    body = json.dumps(report.to_payload(), ensure_ascii=False, indent=2)
    try:
        status_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=status_dir)
    except OSError as error:
        raise FilesystemError(f"Failed to create status file in {status_dir}: {error}") from error

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(body)
        os.replace(tmp_path, path)
    except OSError as error:
        raise FilesystemError(f"Failed to write status file {path}: {error}") from error
    finally:
        tmp_path.unlink(missing_ok=True)
    return path


def _substatus(name: str, text: str, status: StatusType) -> dict[str, Any]:
    return {
        "name": name,
        "status": status.value,
        "formattedMessage": {"lang": "en", "message": text},
    }
