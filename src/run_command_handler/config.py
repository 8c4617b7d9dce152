"""Runtime configuration and per-invocation handler settings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from run_command_handler.errors import SettingsError

DEFAULT_DATA_DIR = Path("/var/lib/waagent/run-command")
DEFAULT_IDENTITY_ENDPOINT = "http://169.254.169.254/metadata/identity/oauth2/token"
DEFAULT_IDENTITY_RESOURCE = "https://storage.azure.com/"
SEQ_NUM_FILE_NAME = "mrseq"
DOWNLOAD_DIR_NAME = "download"


@dataclass(frozen=True, slots=True)
class ScriptSource:
    """Where the script comes from. Exactly one field is populated."""

    script: str | None = None
    encoded_script: str | None = None
    script_uri: str | None = None

    def __post_init__(self) -> None:
        populated = [
            name
            for name, value in (
                ("script", self.script),
                ("encodedScript", self.encoded_script),
                ("scriptUri", self.script_uri),
            )
            if value
        ]
        if not populated:
            raise SettingsError(
                "Script source is empty: one of script, encodedScript or scriptUri is required.",
            )
        if len(populated) > 1:
            raise SettingsError(
                f"Script source is ambiguous: only one of {', '.join(populated)} may be set.",
            )
        if self.script_uri:
            parsed = urlparse(self.script_uri)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise SettingsError(
                    f"Invalid scriptUri: expected an absolute http(s) URL, got {parsed.scheme!r}.",
                )

    @property
    def kind(self) -> str:
        if self.script:
            return "inline"
        if self.encoded_script:
            return "encoded"
        return "remote"

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ScriptSource:
        return cls(
            script=_optional_str(payload, "script"),
            encoded_script=_optional_str(payload, "encodedScript"),
            script_uri=_optional_str(payload, "scriptUri"),
        )


@dataclass(frozen=True, slots=True)
class ManagedIdentity:
    """Managed identity selector. Both fields empty means system-assigned identity."""

    client_id: str | None = None
    object_id: str | None = None

    def __post_init__(self) -> None:
        if self.client_id and self.object_id:
            raise SettingsError(
                "Managed identity accepts either clientId or objectId, not both.",
            )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ManagedIdentity:
        return cls(
            client_id=_optional_str(payload, "clientId"),
            object_id=_optional_str(payload, "objectId"),
        )


@dataclass(frozen=True, slots=True)
class ScriptParameter:
    """Name/value pair exported to the script environment."""

    name: str
    value: str


@dataclass(frozen=True, slots=True)
class PublicSettings:
    source: ScriptSource
    parameters: tuple[ScriptParameter, ...] = ()
    working_directory: str | None = None


@dataclass(frozen=True, slots=True)
class ProtectedSettings:
    source_sas_token: str | None = None
    source_managed_identity: ManagedIdentity | None = None
    protected_parameters: tuple[ScriptParameter, ...] = ()


@dataclass(frozen=True, slots=True)
class HandlerSettings:
    """Immutable settings for one invocation."""

    public: PublicSettings
    protected: ProtectedSettings = field(default_factory=ProtectedSettings)

    @property
    def environment(self) -> dict[str, str]:
        """Script parameters as environment variables; protected values win on clash."""

        env = {param.name: param.value for param in self.public.parameters}
        env.update({param.name: param.value for param in self.protected.protected_parameters})
        return env

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> HandlerSettings:
        """Build settings from a ``handlerSettings`` JSON object."""

        public_raw = payload.get("publicSettings") or {}
        protected_raw = payload.get("protectedSettings") or {}
        if not isinstance(public_raw, dict):
            raise SettingsError("publicSettings must be a JSON object.")
        if isinstance(protected_raw, str):
            raise SettingsError(
                "Encrypted protectedSettings are not supported; provide a JSON object.",
            )
        if not isinstance(protected_raw, dict):
            raise SettingsError("protectedSettings must be a JSON object.")

        source_raw = public_raw.get("source")
        if not isinstance(source_raw, dict):
            raise SettingsError("publicSettings.source is required.")

        identity_raw = protected_raw.get("sourceManagedIdentity")
        identity: ManagedIdentity | None = None
        if isinstance(identity_raw, dict):
            identity = ManagedIdentity.from_dict(identity_raw)
        elif identity_raw is not None:
            raise SettingsError("protectedSettings.sourceManagedIdentity must be a JSON object.")

        return cls(
            public=PublicSettings(
                source=ScriptSource.from_dict(source_raw),
                parameters=_parse_parameters(public_raw.get("parameters"), "parameters"),
                working_directory=_optional_str(public_raw, "workingDirectory"),
            ),
            protected=ProtectedSettings(
                source_sas_token=_optional_str(protected_raw, "sourceSASToken"),
                source_managed_identity=identity,
                protected_parameters=_parse_parameters(
                    protected_raw.get("protectedParameters"),
                    "protectedParameters",
                ),
            ),
        )


def load_handler_settings(config_dir: Path, seq_num: int) -> HandlerSettings:
    """Read ``<config_dir>/<seq_num>.settings`` and return its handler settings."""

    path = config_dir / f"{seq_num}.settings"
    try:
        document = json.loads(path.read_text("utf-8"))
    except FileNotFoundError as error:
        raise SettingsError(f"Settings file not found: {path}") from error
    except (OSError, ValueError) as error:
        raise SettingsError(f"Failed to read settings file {path}: {error}") from error

    runtime_settings = document.get("runtimeSettings") if isinstance(document, dict) else None
    if not isinstance(runtime_settings, list) or not runtime_settings:
        raise SettingsError(f"Settings file {path} has no runtimeSettings entries.")
    if len(runtime_settings) > 1:
        raise SettingsError(f"Settings file {path} has more than one runtimeSettings entry.")
    handler_settings = runtime_settings[0].get("handlerSettings")
    if not isinstance(handler_settings, dict):
        raise SettingsError(f"Settings file {path} has no handlerSettings object.")
    return HandlerSettings.from_dict(handler_settings)


@dataclass(slots=True)
class HandlerEnvironment:
    """Directories assigned to the extension by the host agent."""

    log_folder: Path
    config_folder: Path
    status_folder: Path
    data_folder: Path = DEFAULT_DATA_DIR

    @property
    def seq_num_path(self) -> Path:
        return self.data_folder / SEQ_NUM_FILE_NAME

    def download_dir(self, seq_num: int) -> Path:
        return self.data_folder / DOWNLOAD_DIR_NAME / str(seq_num)

    @classmethod
    def load(cls, path: Path, data_folder: Path = DEFAULT_DATA_DIR) -> HandlerEnvironment:
        """Parse ``HandlerEnvironment.json`` written next to the handler by the agent."""

        try:
            document = json.loads(path.read_text("utf-8"))
        except FileNotFoundError as error:
            raise SettingsError(f"Handler environment file not found: {path}") from error
        except (OSError, ValueError) as error:
            raise SettingsError(f"Failed to read handler environment {path}: {error}") from error

        if not isinstance(document, list) or not document:
            raise SettingsError(f"Handler environment {path} must be a non-empty JSON list.")
        env = document[0].get("handlerEnvironment") if isinstance(document[0], dict) else None
        if not isinstance(env, dict):
            raise SettingsError(f"Handler environment {path} has no handlerEnvironment object.")

        folders: dict[str, Path] = {}
        for key in ("logFolder", "configFolder", "statusFolder"):
            value = env.get(key)
            if not isinstance(value, str) or not value.strip():
                raise SettingsError(f"Handler environment {path} is missing {key}.")
            folders[key] = Path(value)
        return cls(
            log_folder=folders["logFolder"],
            config_folder=folders["configFolder"],
            status_folder=folders["statusFolder"],
            data_folder=data_folder,
        )


@dataclass(slots=True)
class RuntimeSettings:
    """Process-level tunables."""

    data_dir: Path = DEFAULT_DATA_DIR
    environment_path: Path = Path("HandlerEnvironment.json")
    download_timeout_seconds: float = 60.0
    identity_endpoint: str = DEFAULT_IDENTITY_ENDPOINT
    identity_resource: str = DEFAULT_IDENTITY_RESOURCE
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        """Load settings from environment with defaults matching the host agent layout."""

        timeout = _env_float("RUN_COMMAND_HANDLER_DOWNLOAD_TIMEOUT_SECONDS", 60.0)
        if timeout <= 0:
            raise ValueError("RUN_COMMAND_HANDLER_DOWNLOAD_TIMEOUT_SECONDS must be > 0.")
        log_level = os.getenv("RUN_COMMAND_HANDLER_LOG_LEVEL", "INFO").strip().upper()
        if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid RUN_COMMAND_HANDLER_LOG_LEVEL: {log_level!r}")
        return cls(
            data_dir=Path(os.getenv("RUN_COMMAND_HANDLER_DATA_DIR", str(DEFAULT_DATA_DIR))),
            environment_path=Path(
                os.getenv("RUN_COMMAND_HANDLER_ENVIRONMENT_PATH", "HandlerEnvironment.json"),
            ),
            download_timeout_seconds=timeout,
            identity_endpoint=os.getenv(
                "RUN_COMMAND_HANDLER_IDENTITY_ENDPOINT",
                DEFAULT_IDENTITY_ENDPOINT,
            ),
            identity_resource=os.getenv(
                "RUN_COMMAND_HANDLER_IDENTITY_RESOURCE",
                DEFAULT_IDENTITY_RESOURCE,
            ),
            log_level=log_level,
        )


def _parse_parameters(raw: object, field_name: str) -> tuple[ScriptParameter, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise SettingsError(f"{field_name} must be a JSON list of name/value objects.")
    parameters: list[ScriptParameter] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise SettingsError(f"{field_name}[{index}] must be a JSON object.")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise SettingsError(f"{field_name}[{index}] is missing a name.")
        value = item.get("value", "")
        parameters.append(ScriptParameter(name=name.strip(), value=str(value)))
    return tuple(parameters)


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise SettingsError(f"{key} must be a string.")
    return value or None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
