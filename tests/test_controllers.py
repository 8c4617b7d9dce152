from __future__ import annotations

import json
import os
from pathlib import Path

import allure
import httpx
import pytest

from run_command_handler.config import HandlerEnvironment
from run_command_handler.controllers import HandlerCliController, LifecycleCommand

pytestmark = [
    allure.epic("Lifecycle"),
    allure.feature("Handler Controller"),
    pytest.mark.skipif(os.name == "nt", reason="POSIX shell required"),
]


def _command(environment: HandlerEnvironment, seq_num: int) -> LifecycleCommand:
    return LifecycleCommand(
        operation="enable",
        seq_num=seq_num,
        environment_path=environment.config_folder.parent / "HandlerEnvironment.json",
        data_dir=environment.data_folder,
    )


def test_enable_downloads_remote_script_with_managed_identity_fallback(
    handler_environment,
    write_settings,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/metadata/identity/oauth2/token":
            return httpx.Response(200, json={"access_token": "mi-token"})
        if request.headers.get("Authorization") == "Bearer mi-token":
            return httpx.Response(200, content=b"echo downloaded\n")
        return httpx.Response(403)

    write_settings(
        4,
        {"source": {"scriptUri": "https://storage.local/scripts/job.sh"}},
        {"sourceSASToken": "sig=expired", "sourceManagedIdentity": {}},
    )
    controller = HandlerCliController(
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        configure_logs=False,
    )

    result = controller.run(_command(handler_environment, 4))

    assert result.success, result.lines
    assert result.status_path == handler_environment.status_folder / "4.status"
    work_dir = handler_environment.download_dir(4)
    assert (work_dir / "job.sh").read_text("utf-8") == "echo downloaded\n"
    assert (work_dir / "stdout").read_text("utf-8") == "downloaded\n"


def test_enable_download_failure_reports_error_status(
    handler_environment,
    write_settings,
) -> None:
    write_settings(6, {"source": {"scriptUri": "https://storage.local/scripts/job.sh"}})
    controller = HandlerCliController(
        http_client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(404))),
        configure_logs=False,
    )

    result = controller.run(_command(handler_environment, 6))

    assert not result.success
    assert "HTTP 404" in result.lines[0]
    payload = json.loads((handler_environment.status_folder / "6.status").read_text("utf-8"))
    assert payload[0]["status"]["status"] == "error"
    assert list(handler_environment.download_dir(6).iterdir()) == []


def test_enable_without_settings_reports_error(handler_environment) -> None:
    controller = HandlerCliController(configure_logs=False)

    result = controller.run(_command(handler_environment, 9))

    assert not result.success
    assert "Settings file not found" in result.lines[0]


def test_enable_with_relative_data_dir(
    handler_environment,
    write_settings,
    tmp_path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    write_settings(0, {"source": {"script": "echo hi"}})
    monkeypatch.chdir(tmp_path)
    command = _command(handler_environment, 0)
    command.data_dir = Path("reldata")

    result = HandlerCliController(configure_logs=False).run(command)

    assert result.success, result.lines
    assert (tmp_path / "reldata" / "download" / "0" / "stdout").read_text("utf-8") == "hi\n"


def test_enable_runs_in_configured_working_directory(
    handler_environment,
    write_settings,
    tmp_path,
) -> None:
    working_directory = tmp_path / "workspace"
    write_settings(
        2,
        {"source": {"script": "pwd > where.txt"}, "workingDirectory": str(working_directory)},
    )

    result = HandlerCliController(configure_logs=False).run(_command(handler_environment, 2))

    assert result.success, result.lines
    where = (working_directory / "where.txt").read_text("utf-8")
    assert where == f"{working_directory.resolve()}\n"
    assert (handler_environment.download_dir(2) / "stdout").exists()


@pytest.mark.parametrize("raw", ["-3", "abc"])
def test_invalid_config_sequence_number_falls_back_to_latest_settings(
    handler_environment,
    write_settings,
    monkeypatch: pytest.MonkeyPatch,
    raw: str,
) -> None:
    write_settings(1, {"source": {"script": "echo latest"}})
    monkeypatch.setenv("ConfigSequenceNumber", raw)
    command = _command(handler_environment, 0)
    command.seq_num = None

    result = HandlerCliController(configure_logs=False).run(command)

    assert result.success, result.lines
    assert result.status_path == handler_environment.status_folder / "1.status"
    assert not (handler_environment.status_folder / f"{raw}.status").exists()


def test_negative_explicit_sequence_number_is_rejected(handler_environment) -> None:
    result = HandlerCliController(configure_logs=False).run(_command(handler_environment, -1))

    assert not result.success
    assert "must be >= 0" in result.lines[0]
    assert list(handler_environment.status_folder.iterdir()) == []
