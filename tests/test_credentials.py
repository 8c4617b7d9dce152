from __future__ import annotations

import allure
import httpx
import pytest

from run_command_handler.config import ManagedIdentity, ProtectedSettings
from run_command_handler.errors import DownloadError
from run_command_handler.http.credentials import (
    AnonymousAuth,
    IdentityTokenClient,
    ManagedIdentityAuth,
    SasTokenAuth,
    resolve_auth_strategies,
)

pytestmark = [
    allure.epic("Script Acquisition"),
    allure.feature("Download Credentials"),
]


def _token_client(handler) -> IdentityTokenClient:
    return IdentityTokenClient(
        httpx.Client(transport=httpx.MockTransport(handler)),
        endpoint="http://identity.local/token",
        resource="https://storage.azure.com/",
    )


def test_no_credentials_resolve_to_anonymous() -> None:
    strategies = resolve_auth_strategies(ProtectedSettings(), _token_client(None))

    assert [strategy.name for strategy in strategies] == ["anonymous"]
    assert isinstance(strategies[0], AnonymousAuth)


def test_sas_is_tried_before_managed_identity() -> None:
    strategies = resolve_auth_strategies(
        ProtectedSettings(
            source_sas_token="sig=abc",
            source_managed_identity=ManagedIdentity(client_id="cid"),
        ),
        _token_client(None),
    )

    assert [strategy.name for strategy in strategies] == ["sas", "managed_identity"]
    assert isinstance(strategies[1], ManagedIdentityAuth)
    assert strategies[1].client_id == "cid"


def test_sas_token_is_merged_into_existing_query() -> None:
    uri, headers = SasTokenAuth(token="?sig=abc").prepare("https://host/c/s.sh?x=1")

    assert uri == "https://host/c/s.sh?x=1&sig=abc"
    assert headers == {}


def test_identity_token_request_carries_metadata_header_and_client_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Metadata"] == "true"
        assert request.url.params["api-version"] == "2018-02-01"
        assert request.url.params["resource"] == "https://storage.azure.com/"
        assert request.url.params["client_id"] == "cid"
        assert "object_id" not in request.url.params
        return httpx.Response(200, json={"access_token": "tok", "token_type": "Bearer"})

    auth = ManagedIdentityAuth(token_client=_token_client(handler), client_id="cid")
    uri, headers = auth.prepare("https://host/c/s.sh")

    assert uri == "https://host/c/s.sh"
    assert headers["Authorization"] == "Bearer tok"


def test_identity_token_response_without_access_token_fails() -> None:
    client = _token_client(lambda request: httpx.Response(200, json={"token_type": "Bearer"}))

    with pytest.raises(DownloadError, match="no access_token"):
        client.get_token()
