"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from run_command_handler.config import HandlerEnvironment


@pytest.fixture()
def handler_environment(tmp_path: Path) -> HandlerEnvironment:
    """HandlerEnvironment.json plus config/log/status/data folders under tmp_path."""

    root = tmp_path / "handler"
    folders = {
        "logFolder": root / "log",
        "configFolder": root / "config",
        "statusFolder": root / "status",
    }
    for folder in folders.values():
        folder.mkdir(parents=True, exist_ok=True)
    document = [
        {
            "name": "Microsoft.CPlat.Core.RunCommandLinux",
            "version": 1.0,
            "handlerEnvironment": {key: str(value) for key, value in folders.items()},
        },
    ]
    (root / "HandlerEnvironment.json").write_text(json.dumps(document), "utf-8")
    return HandlerEnvironment.load(root / "HandlerEnvironment.json", data_folder=root / "data")


@pytest.fixture()
def write_settings(
    handler_environment: HandlerEnvironment,
) -> Callable[..., Path]:
    """Write ``<seq>.settings`` into the handler config folder."""

    def _write(
        seq_num: int,
        public: dict[str, Any],
        protected: dict[str, Any] | None = None,
    ) -> Path:
        handler_settings: dict[str, Any] = {"publicSettings": public}
        if protected is not None:
            handler_settings["protectedSettings"] = protected
        path = handler_environment.config_folder / f"{seq_num}.settings"
        path.write_text(
            json.dumps({"runtimeSettings": [{"handlerSettings": handler_settings}]}),
            "utf-8",
        )
        return path

    return _write
