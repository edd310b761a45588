"""Shared fixtures: an in-memory QuickBooks served through httpx.MockTransport."""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

import httpx
import pytest

from qbapi.auth.discovery import EndpointCache, EndpointSet
from qbapi.auth.oauth2 import Credentials
from qbapi.config import Environment

AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"

DISCOVERY_DOC = {
    "issuer": "https://oauth.platform.intuit.com/op/v1",
    "authorization_endpoint": AUTH_URL,
    "token_endpoint": TOKEN_URL,
    "userinfo_endpoint": "https://sandbox-accounts.platform.intuit.com/v1/openid_connect/userinfo",
    "revocation_endpoint": "https://developer.api.intuit.com/v2/oauth2/tokens/revoke",
    "jwks_uri": "https://oauth.platform.intuit.com/op/v1/jwks",
}

TOKEN_RESPONSE = {
    "access_token": "AT1",
    "refresh_token": "RT1",
    "token_type": "bearer",
    "expires_in": 3600,
    "x_refresh_token_expires_in": 8726400,
}


class FakeQuickBooks:
    """Routes requests to discovery, token and API handlers and records them."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.discovery_response: httpx.Response | None = None
        self.token_response: dict[str, Any] = dict(TOKEN_RESPONSE)
        self.api_status = 200
        self.api_body: Any = {"QueryResponse": {}}

    def discovery_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/.well-known/" in r.url.path]

    def api_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/v3/company")]

    def token_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == TOKEN_URL]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if "/.well-known/" in request.url.path:
            if self.discovery_response is not None:
                return self.discovery_response
            return httpx.Response(200, json=DISCOVERY_DOC)
        if str(request.url) == TOKEN_URL:
            return httpx.Response(200, json=self.token_response)
        if isinstance(self.api_body, (bytes, str)):
            return httpx.Response(self.api_status, content=self.api_body)
        return httpx.Response(self.api_status, content=json.dumps(self.api_body).encode())


@pytest.fixture
def fake_qbo() -> FakeQuickBooks:
    return FakeQuickBooks()


@pytest.fixture
def http_client(fake_qbo: FakeQuickBooks) -> Iterator[httpx.Client]:
    client = httpx.Client(transport=httpx.MockTransport(fake_qbo))
    yield client
    client.close()


@pytest.fixture
def endpoint_cache() -> EndpointCache:
    return EndpointCache()


@pytest.fixture
def endpoints() -> EndpointSet:
    return EndpointSet(
        environment=Environment.SANDBOX,
        authorization_endpoint=AUTH_URL,
        token_endpoint=TOKEN_URL,
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(client_id="test_client", client_secret="test_secret")
