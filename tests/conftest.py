"""Shared fixtures and utilities for MCP Auth Debugger tests."""

import asyncio
import json
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch
from urllib.parse import parse_qs

import httpx
import pytest

from mcp_auth_debugger.config import Settings
from mcp_auth_debugger.oauth.discovery import AuthServerMetadata
from mcp_auth_debugger.oauth.manager import AuthDebugger
from mcp_auth_debugger.oauth.store import CredentialStore
from mcp_auth_debugger.oauth.tokens import Registered

SERVER_URL = "https://mcp.example.com"
REDIRECT_URI = "http://localhost:6274/oauth/callback/debug"

FULL_METADATA = {
    "issuer": "https://auth.example.com",
    "authorization_endpoint": "https://auth.example.com/authorize",
    "token_endpoint": "https://auth.example.com/token",
    "registration_endpoint": "https://auth.example.com/register",
    "scopes_supported": ["read", "write"],
    "code_challenge_methods_supported": ["S256"],
}


# ============================================================================
# Fake authorization server
# ============================================================================


class FakeAuthServer:
    """In-process authorization server behind an httpx.MockTransport.

    Responses are configured per endpoint; every request is recorded so tests
    can assert on what was (or was not) sent.
    """

    def __init__(self) -> None:
        self.metadata_status = 200
        self.metadata_body: Any = dict(FULL_METADATA)
        self.register_status = 201
        self.register_body: Any = {"client_id": "abc123"}
        self.token_responses: list[tuple[int, Any]] = []
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "GET" and path.startswith("/.well-known/oauth-authorization-server"):
            if self.metadata_status != 200:
                return httpx.Response(self.metadata_status, text="not here")
            return httpx.Response(200, json=self.metadata_body)

        if request.method == "POST" and path == "/register":
            return httpx.Response(self.register_status, json=self.register_body)

        if request.method == "POST" and path == "/token":
            if self.token_responses:
                status, body = self.token_responses.pop(0)
            else:
                status, body = 200, {
                    "access_token": "tok_1",
                    "token_type": "Bearer",
                    "refresh_token": "ref_1",
                    "expires_in": 3600,
                }
            return httpx.Response(status, json=body)

        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def stalled_client(self, path: str) -> tuple[httpx.AsyncClient, asyncio.Event]:
        """Client whose requests to ``path`` never get a response.

        The returned event is set once such a request is in flight. Stalled
        requests are not recorded, since the server never answered them.
        """
        entered = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == path:
                entered.set()
                await asyncio.Event().wait()
            return self.handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(handler)), entered

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    @staticmethod
    def json(request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture
def auth_server() -> FakeAuthServer:
    return FakeAuthServer()


# ============================================================================
# Storage and drivers
# ============================================================================


@pytest.fixture
def no_keyring() -> Generator[None, None, None]:
    """Force the machine-derived fallback key so tests never touch the OS keyring."""
    with patch(
        "mcp_auth_debugger.oauth.store.keyring.get_password",
        side_effect=Exception("No keyring"),
    ):
        yield


@pytest.fixture
def store(tmp_path: Path, no_keyring: None) -> CredentialStore:
    """Create a credential store in a temporary directory."""
    return CredentialStore(store_dir=tmp_path / "oauth")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(store_dir=tmp_path / "oauth", redirect_uri=REDIRECT_URI)


@pytest.fixture
def debugger(settings: Settings, store: CredentialStore, auth_server: FakeAuthServer) -> AuthDebugger:
    """AuthDebugger wired to the fake authorization server."""
    return AuthDebugger(settings=settings, store=store, http_client=auth_server.client())


# ============================================================================
# Sample data
# ============================================================================


@pytest.fixture
def metadata() -> AuthServerMetadata:
    return AuthServerMetadata.from_dict(FULL_METADATA, SERVER_URL)


@pytest.fixture
def registered_client() -> Registered:
    return Registered(client_id="abc123", redirect_uris=(REDIRECT_URI,))
