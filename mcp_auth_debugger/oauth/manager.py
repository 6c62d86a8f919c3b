"""Caller-facing entry points and the guided and quick drivers.

There is a single step function, ``OAuthStateMachine.execute_step``. The
guided driver (``AuthDebugger.proceed``) calls it once per operator trigger;
the quick driver (``AuthDebugger.quick_run``) calls it in a loop until the
flow completes or a step fails.
"""

import inspect
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Union

import httpx

from ..config import Settings
from .discovery import normalize_server_url
from .errors import ValidationError
from .machine import OAuthStateMachine
from .state import FlowState, OAuthStep, StatusMessage
from .store import CredentialStore
from .tokens import Registered, TokenSet

logger = logging.getLogger(__name__)

# Receives the authorization URL, returns the code or the full redirect URL
CodeProvider = Callable[[str], Union[str, Awaitable[str]]]


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 0:
        return "Expired"

    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    if days < 14:
        return f"{days} day{'s' if days != 1 else ''}"

    weeks = days // 7
    return f"{weeks} week{'s' if weeks != 1 else ''}"


def _format_time_ago(dt: datetime) -> str:
    """Format a datetime as time ago from now (e.g. "3 hours ago")."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return _format_timedelta(datetime.now(timezone.utc) - dt) + " ago"


@dataclass
class AuthStatus:
    """Snapshot of what is stored for one server.

    Attributes:
        server_url: The server identity
        authenticated: Whether tokens are stored
        expired: Whether the stored access token is expired
        expires_at: Expiry (ISO format string)
        expires_in_human: Human-readable time until expiry
        issued_at: Issue time (ISO format string)
        issued_ago_human: Human-readable time since issuance
        has_refresh_token: Whether a refresh token is stored
        scope: Granted scopes
        client_id: Stored client identifier
        metadata_source: "discovered", "default" or None when not discovered yet
        pending_authorization: Whether a PKCE verifier awaits a code exchange
    """

    server_url: str
    authenticated: bool = False
    expired: bool = False
    expires_at: str | None = None
    expires_in_human: str | None = None
    issued_at: str | None = None
    issued_ago_human: str | None = None
    has_refresh_token: bool = False
    scope: str | None = None
    client_id: str | None = None
    metadata_source: str | None = None
    pending_authorization: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "server_url": self.server_url,
            "authenticated": self.authenticated,
            "expired": self.expired,
            "expires_at": self.expires_at,
            "expires_in_human": self.expires_in_human,
            "issued_at": self.issued_at,
            "issued_ago_human": self.issued_ago_human,
            "has_refresh_token": self.has_refresh_token,
            "scope": self.scope,
            "client_id": self.client_id,
            "metadata_source": self.metadata_source,
            "pending_authorization": self.pending_authorization,
        }


@dataclass
class AuthDebugger:
    """Drives OAuth flows for the servers being debugged.

    Usage:
        debugger = AuthDebugger(load_settings())

        # Guided: one step per trigger
        state = debugger.start_flow("https://mcp.example.com")
        state = await debugger.proceed(state)

        # Quick: run everything, asking for the code when needed
        tokens = await debugger.quick_run(server_url, code_provider=input)
    """

    settings: Settings = field(default_factory=Settings)
    store: CredentialStore | None = None
    http_client: httpx.AsyncClient | None = None
    on_status: Callable[[str], None] | None = None

    def __post_init__(self) -> None:
        if self.store is None:
            self.store = CredentialStore(self.settings.store_dir)
        self.machine = OAuthStateMachine(
            self.store,
            redirect_uri=self.settings.redirect_uri,
            scope=self.settings.scope,
            client_name=self.settings.client_name,
            timeout=self.settings.timeout,
            http_client=self.http_client,
            on_status=self.on_status,
        )
        # Server identities with a guided step currently running
        self._running: set[str] = set()

    @property
    def credential_store(self) -> CredentialStore:
        assert self.store is not None
        return self.store

    def start_flow(self, server_url: str) -> FlowState:
        """Begin (or restart) a flow at metadata discovery.

        Previously issued tokens are loaded so they stay visible while the
        flow runs again.

        Raises:
            ValidationError: If the server URL is missing or invalid
        """
        server_url = normalize_server_url(server_url)
        self.credential_store.save_server_url(server_url)

        logger.debug(f"Starting OAuth flow for {server_url}")
        return FlowState(
            server_url=server_url,
            step=OAuthStep.METADATA_DISCOVERY,
            tokens=self.credential_store.get_tokens(server_url),
        )

    def reset(self, state: FlowState) -> FlowState:
        """Return to metadata discovery; the only way out of ``complete``."""
        return self.start_flow(state.server_url)

    async def execute_step(self, state: FlowState) -> FlowState:
        """Run the current step once; see ``OAuthStateMachine.execute_step``."""
        return await self.machine.execute_step(state)

    def is_running(self, server_url: str) -> bool:
        """Whether a guided step is currently running for this server."""
        return normalize_server_url(server_url) in self._running

    async def proceed(self, state: FlowState) -> FlowState:
        """Guided driver: run exactly one step and hand control back.

        A second trigger for the same server while a step is running is
        refused, whichever FlowState value it is made with.

        Raises:
            ValidationError: If a step is already running for this server
        """
        if state.in_progress or state.server_url in self._running:
            raise ValidationError("A step is already in progress for this flow")

        self._running.add(state.server_url)
        try:
            running = replace(state, in_progress=True, status_message=None, latest_error=None)
            result = await self.machine.execute_step(running)
        finally:
            self._running.discard(state.server_url)
        return replace(result, in_progress=False)

    async def quick_run(
        self,
        server_url: str,
        code_provider: CodeProvider | None = None,
    ) -> TokenSet:
        """Quick driver: run every step without pausing.

        Args:
            server_url: The server to authenticate with
            code_provider: Called with the authorization URL once it exists;
                returns the authorization code or the full redirect URL. May
                be a coroutine function.

        Returns:
            The issued TokenSet

        Raises:
            OAuthFlowError: The error of the first failing step
        """
        state = self.start_flow(server_url)

        while not state.is_complete:
            if state.step is OAuthStep.AUTHORIZATION_CODE and not state.authorization_code:
                if code_provider is None:
                    raise ValidationError(
                        "An authorization code is required; "
                        f"authorize at {state.authorization_url}"
                    )
                value = code_provider(state.authorization_url or "")
                if inspect.isawaitable(value):
                    value = await value
                state = state.with_authorization_code(value)

            state = await self.machine.execute_step(state)
            if state.latest_error is not None:
                raise state.latest_error

        assert state.tokens is not None
        return state.tokens

    async def refresh(self, server_url: str) -> FlowState:
        """Refresh stored tokens, bypassing discovery, registration and redirect."""
        server_url = normalize_server_url(server_url)
        state = FlowState(
            server_url=server_url,
            step=OAuthStep.METADATA_DISCOVERY,
            metadata=self.credential_store.get_server_metadata(server_url),
            client=self.credential_store.get_client_information(server_url),
            tokens=self.credential_store.get_tokens(server_url),
        )
        return await self.machine.refresh(state)

    def clear_state(self, server_url: str) -> FlowState:
        """Forget everything stored for one server and start over."""
        server_url = normalize_server_url(server_url)
        self.credential_store.clear(server_url)
        return FlowState(
            server_url=server_url,
            status_message=StatusMessage("success", "OAuth tokens cleared successfully"),
        )

    def get_status(self, server_url: str) -> AuthStatus:
        """Summarize stored tokens, client and metadata for a server."""
        server_url = normalize_server_url(server_url)
        store = self.credential_store

        client = store.get_client_information(server_url)
        metadata = store.get_server_metadata(server_url)
        status = AuthStatus(
            server_url=server_url,
            client_id=client.client_id if isinstance(client, Registered) else None,
            metadata_source=(
                None if metadata is None else ("default" if metadata.is_default else "discovered")
            ),
            pending_authorization=store.get_code_verifier(server_url) is not None,
        )

        token = store.get_tokens(server_url)
        if token is None:
            return status

        status.authenticated = True
        status.expired = token.is_expired()
        status.has_refresh_token = token.has_refresh_token()
        status.scope = token.scope
        status.issued_at = token.issued_at.isoformat()
        status.issued_ago_human = _format_time_ago(token.issued_at)
        if token.expires_at:
            status.expires_at = token.expires_at.isoformat()
            expires_at = token.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            status.expires_in_human = _format_timedelta(expires_at - datetime.now(timezone.utc))

        return status
