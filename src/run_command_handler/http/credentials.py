"""Request authentication for remote script downloads.

Two credentials can be configured in protected settings: a SAS token appended
to the blob URI, and a managed identity whose bearer token is issued by the
local instance metadata identity endpoint. They are tried in that order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from run_command_handler.config import (
    DEFAULT_IDENTITY_ENDPOINT,
    DEFAULT_IDENTITY_RESOURCE,
    ProtectedSettings,
)
from run_command_handler.errors import DownloadError

logger = logging.getLogger(__name__)

IDENTITY_API_VERSION = "2018-02-01"
# Blob storage rejects bearer tokens on requests older than this service version.
STORAGE_API_VERSION = "2018-03-28"


class AuthStrategy(Protocol):
    """Turns a script URI into the request URI and headers for one attempt."""

    name: str

    def prepare(self, uri: str) -> tuple[str, dict[str, str]]:
        """Return request URI and extra headers. Raises ``DownloadError`` on failure."""


@dataclass(slots=True)
class AnonymousAuth:
    name: str = "anonymous"

    def prepare(self, uri: str) -> tuple[str, dict[str, str]]:
        return uri, {}


@dataclass(slots=True)
class SasTokenAuth:
    """Appends a SAS token to the URI query string."""

    token: str
    name: str = "sas"

    def prepare(self, uri: str) -> tuple[str, dict[str, str]]:
        token = self.token.strip().lstrip("?")
        if not token:
            return uri, {}
        separator = "&" if "?" in uri else "?"
        return f"{uri}{separator}{token}", {}


class IdentityTokenClient:
    """Client for the local managed identity token endpoint."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        endpoint: str = DEFAULT_IDENTITY_ENDPOINT,
        resource: str = DEFAULT_IDENTITY_RESOURCE,
    ) -> None:
        self._client = client
        self.endpoint = endpoint
        self.resource = resource

    def get_token(self, *, client_id: str | None = None, object_id: str | None = None) -> str:
        params = {"api-version": IDENTITY_API_VERSION, "resource": self.resource}
        if client_id:
            params["client_id"] = client_id
        elif object_id:
            params["object_id"] = object_id

        try:
            response = self._client.get(self.endpoint, params=params, headers={"Metadata": "true"})
        except httpx.HTTPError as exc:
            raise DownloadError(
                f"Failed to request managed identity token from identity endpoint: {exc}",
            ) from exc
        if not response.is_success:
            raise DownloadError(
                "Identity endpoint returned HTTP "
                f"{response.status_code} for managed identity token request",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise DownloadError(
                "Identity endpoint returned a non-JSON managed identity token response",
            ) from exc
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise DownloadError("Identity endpoint response has no access_token")
        return token


@dataclass(slots=True)
class ManagedIdentityAuth:
    """Sends the request with a bearer token issued for the managed identity."""

    token_client: IdentityTokenClient
    client_id: str | None = None
    object_id: str | None = None
    name: str = "managed_identity"

    def prepare(self, uri: str) -> tuple[str, dict[str, str]]:
        token = self.token_client.get_token(client_id=self.client_id, object_id=self.object_id)
        return uri, {
            "Authorization": f"Bearer {token}",
            "x-ms-version": STORAGE_API_VERSION,
        }


def resolve_auth_strategies(
    protected: ProtectedSettings,
    token_client: IdentityTokenClient,
) -> list[AuthStrategy]:
    """Ordered strategies for a remote script: SAS, then managed identity, else anonymous."""

    strategies: list[AuthStrategy] = []
    if protected.source_sas_token:
        strategies.append(SasTokenAuth(token=protected.source_sas_token))
    identity = protected.source_managed_identity
    if identity is not None:
        strategies.append(
            ManagedIdentityAuth(
                token_client=token_client,
                client_id=identity.client_id,
                object_id=identity.object_id,
            ),
        )
    if not strategies:
        strategies.append(AnonymousAuth())
    logger.debug("Resolved download strategies: %s", [strategy.name for strategy in strategies])
    return strategies
