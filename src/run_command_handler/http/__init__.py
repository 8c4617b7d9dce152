"""Authenticated HTTP download of remote scripts."""

from run_command_handler.http.credentials import (
    AnonymousAuth,
    AuthStrategy,
    IdentityTokenClient,
    ManagedIdentityAuth,
    SasTokenAuth,
    resolve_auth_strategies,
)
from run_command_handler.http.fetcher import DownloadAttemptResult, ScriptDownloader

__all__ = [
    "AnonymousAuth",
    "AuthStrategy",
    "DownloadAttemptResult",
    "IdentityTokenClient",
    "ManagedIdentityAuth",
    "SasTokenAuth",
    "ScriptDownloader",
    "resolve_auth_strategies",
]
