"""Tests for the guided and quick drivers."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from mcp_auth_debugger.oauth.errors import NetworkError, TokenError, ValidationError
from mcp_auth_debugger.oauth.manager import AuthDebugger, AuthStatus, _format_time_ago, _format_timedelta
from mcp_auth_debugger.oauth.state import OAuthStep
from mcp_auth_debugger.oauth.tokens import UNREGISTERED, Registered, TokenSet

SERVER_URL = "https://mcp.example.com"


class TestFormatTimedelta:
    """Tests for _format_timedelta function."""

    def test_negative_timedelta_returns_expired(self) -> None:
        assert _format_timedelta(timedelta(seconds=-1)) == "Expired"

    def test_seconds(self) -> None:
        assert _format_timedelta(timedelta(seconds=0)) == "0 seconds"
        assert _format_timedelta(timedelta(seconds=59)) == "59 seconds"

    def test_singular_and_plural(self) -> None:
        assert _format_timedelta(timedelta(minutes=1)) == "1 minute"
        assert _format_timedelta(timedelta(minutes=45)) == "45 minutes"
        assert _format_timedelta(timedelta(hours=1)) == "1 hour"
        assert _format_timedelta(timedelta(hours=23)) == "23 hours"
        assert _format_timedelta(timedelta(days=1)) == "1 day"
        assert _format_timedelta(timedelta(days=13)) == "13 days"

    def test_weeks_threshold(self) -> None:
        """14+ days are shown in weeks."""
        assert _format_timedelta(timedelta(days=14)) == "2 weeks"
        assert _format_timedelta(timedelta(days=21)) == "3 weeks"

    def test_time_ago(self) -> None:
        two_hours_ago = datetime.now(timezone.utc) - timedelta(hours=2, minutes=1)
        assert _format_time_ago(two_hours_ago) == "2 hours ago"

    def test_time_ago_naive_datetime(self) -> None:
        naive = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=5, seconds=1)
        assert _format_time_ago(naive) == "5 minutes ago"


class TestStartFlow:
    """Tests for AuthDebugger.start_flow."""

    def test_starts_at_metadata_discovery(self, debugger, store):
        state = debugger.start_flow("https://MCP.example.com/")

        assert state.server_url == SERVER_URL
        assert state.step is OAuthStep.METADATA_DISCOVERY
        assert state.client is UNREGISTERED
        assert state.tokens is None
        assert store.get_server_url(SERVER_URL) == SERVER_URL

    def test_existing_tokens_preloaded(self, debugger, store):
        store.save_tokens(SERVER_URL, TokenSet(access_token="old"))

        state = debugger.start_flow(SERVER_URL)

        assert state.step is OAuthStep.METADATA_DISCOVERY
        assert state.tokens.access_token == "old"

    def test_empty_url_rejected(self, debugger):
        with pytest.raises(ValidationError, match="Please enter a server URL"):
            debugger.start_flow("")

    def test_reset_from_complete(self, debugger):
        state = replace(debugger.start_flow(SERVER_URL), step=OAuthStep.COMPLETE)

        assert debugger.reset(state).step is OAuthStep.METADATA_DISCOVERY


class TestProceed:
    """Tests for the guided driver."""

    @pytest.mark.asyncio
    async def test_runs_exactly_one_step(self, debugger, auth_server):
        state = debugger.start_flow(SERVER_URL)

        state = await debugger.proceed(state)

        assert state.step is OAuthStep.CLIENT_REGISTRATION
        assert state.in_progress is False
        assert auth_server.requests_to("/register") == []

    @pytest.mark.asyncio
    async def test_refuses_while_in_progress(self, debugger, auth_server):
        state = replace(debugger.start_flow(SERVER_URL), in_progress=True)

        with pytest.raises(ValidationError, match="already in progress"):
            await debugger.proceed(state)

        assert auth_server.requests == []

    @pytest.mark.asyncio
    async def test_second_trigger_refused_while_step_runs(self, settings, store, auth_server):
        client, entered = auth_server.stalled_client("/.well-known/oauth-authorization-server")
        debugger = AuthDebugger(settings=settings, store=store, http_client=client)
        state = debugger.start_flow(SERVER_URL)

        first = asyncio.create_task(debugger.proceed(state))
        await entered.wait()
        assert debugger.is_running(SERVER_URL)

        with pytest.raises(ValidationError, match="already in progress"):
            await debugger.proceed(state)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert not debugger.is_running(SERVER_URL)

        await client.aclose()

    @pytest.mark.asyncio
    async def test_other_servers_not_blocked(self, settings, store, auth_server):
        client, entered = auth_server.stalled_client("/.well-known/oauth-authorization-server")
        debugger = AuthDebugger(settings=settings, store=store, http_client=client)

        first = asyncio.create_task(debugger.proceed(debugger.start_flow(SERVER_URL)))
        await entered.wait()

        assert debugger.is_running("https://MCP.example.com/")
        assert not debugger.is_running("https://other.example.com")

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        await client.aclose()

    @pytest.mark.asyncio
    async def test_previous_error_cleared_on_success(self, debugger, auth_server):
        auth_server.metadata_status = 503
        failed = await debugger.proceed(debugger.start_flow(SERVER_URL))
        assert isinstance(failed.latest_error, NetworkError)
        assert failed.in_progress is False

        auth_server.metadata_status = 200
        state = await debugger.proceed(failed)

        assert state.latest_error is None
        assert state.status_message.kind == "info"


class TestQuickRun:
    """Tests for the quick driver."""

    @pytest.mark.asyncio
    async def test_sync_code_provider(self, debugger, auth_server):
        seen_urls = []

        def provide(url: str) -> str:
            seen_urls.append(url)
            return "xyz"

        tokens = await debugger.quick_run(SERVER_URL, code_provider=provide)

        assert tokens.access_token == "tok_1"
        assert seen_urls[0].startswith("https://auth.example.com/authorize?")
        (token_request,) = auth_server.requests_to("/token")
        assert auth_server.form(token_request)["code"] == "xyz"

    @pytest.mark.asyncio
    async def test_async_code_provider_with_redirect_url(self, debugger, store):
        async def provide(url: str) -> str:
            csrf_state = store.get_oauth_state(SERVER_URL)
            return f"http://localhost:6274/oauth/callback/debug?code=xyz&state={csrf_state}"

        tokens = await debugger.quick_run(SERVER_URL, code_provider=provide)

        assert tokens.refresh_token == "ref_1"

    @pytest.mark.asyncio
    async def test_without_provider(self, debugger, auth_server):
        with pytest.raises(ValidationError, match="authorization code is required"):
            await debugger.quick_run(SERVER_URL)

        assert auth_server.requests_to("/token") == []

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, debugger, auth_server):
        auth_server.token_responses.append((400, {"error": "invalid_grant"}))

        with pytest.raises(TokenError) as exc_info:
            await debugger.quick_run(SERVER_URL, code_provider=lambda url: "xyz")

        assert exc_info.value.code == "invalid_grant"
        assert len(auth_server.requests_to("/token")) == 1

    @pytest.mark.asyncio
    async def test_discovery_failure_makes_no_further_requests(self, debugger, auth_server):
        auth_server.metadata_status = 500

        with pytest.raises(NetworkError):
            await debugger.quick_run(SERVER_URL, code_provider=lambda url: "xyz")

        assert auth_server.requests_to("/register") == []


class TestClearState:
    """Tests for AuthDebugger.clear_state."""

    @pytest.mark.asyncio
    async def test_clears_one_server(self, debugger, store):
        await debugger.quick_run(SERVER_URL, code_provider=lambda url: "xyz")
        store.save_tokens("https://other.example.com", TokenSet(access_token="other"))

        state = debugger.clear_state(SERVER_URL)

        assert state.step is OAuthStep.METADATA_DISCOVERY
        assert state.tokens is None
        assert state.status_message.kind == "success"
        assert state.status_message.message == "OAuth tokens cleared successfully"
        assert store.keys(SERVER_URL) == []
        assert store.get_tokens("https://other.example.com").access_token == "other"


class TestGetStatus:
    """Tests for AuthDebugger.get_status."""

    def test_nothing_stored(self, debugger):
        status = debugger.get_status(SERVER_URL)

        assert status == AuthStatus(server_url=SERVER_URL)
        assert status.to_dict()["authenticated"] is False

    @pytest.mark.asyncio
    async def test_after_flow(self, debugger):
        await debugger.quick_run(SERVER_URL, code_provider=lambda url: "xyz")

        status = debugger.get_status(SERVER_URL)

        assert status.authenticated is True
        assert status.expired is False
        assert status.has_refresh_token is True
        assert status.client_id == "abc123"
        assert status.metadata_source == "discovered"
        assert status.pending_authorization is False
        assert status.expires_in_human in ("59 minutes", "1 hour")
        assert status.issued_ago_human.endswith("seconds ago")

    def test_pending_authorization(self, debugger, store):
        store.save_client_information(SERVER_URL, Registered(client_id="abc123"))
        store.save_code_verifier(SERVER_URL, "verifier")

        status = debugger.get_status(SERVER_URL)

        assert status.pending_authorization is True
        assert status.authenticated is False
        assert status.client_id == "abc123"

    def test_expired_token(self, debugger, store):
        store.save_tokens(
            SERVER_URL,
            TokenSet(access_token="old", expires_at=datetime.now(timezone.utc) - timedelta(hours=1)),
        )

        status = debugger.get_status(SERVER_URL)

        assert status.expired is True
        assert status.expires_in_human == "Expired"
