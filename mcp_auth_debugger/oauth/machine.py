"""The OAuth step state machine.

``OAuthStateMachine.execute_step`` runs exactly one step of the flow:

    metadata_discovery -> client_registration -> authorization_redirect
        -> authorization_code -> token_request -> complete

It takes the caller's FlowState and returns a new one. On success the step
advances by one; on failure the returned state keeps the same step, with the
error in ``latest_error``, so calling again is the retry. The machine keeps
no session state of its own: everything that must outlive a call is either
in the returned FlowState or in the CredentialStore.
"""

import hmac
import logging
from dataclasses import replace
from typing import Awaitable, Callable

import httpx

from .authorization import build_authorization_url, parse_authorization_response
from .discovery import DEFAULT_TIMEOUT, AuthServerMetadata, default_metadata, discover, normalize_server_url
from .errors import FatalConfigurationError, OAuthFlowError, StateMismatchError, ValidationError
from .exchange import AuthorizationCodeGrant, RefreshTokenGrant, exchange_token
from .pkce import generate_pkce_pair, generate_state
from .registration import DEFAULT_CLIENT_NAME, register_client
from .state import FlowState, OAuthStep, StatusMessage
from .store import CredentialStore
from .tokens import Registered

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URI = "http://localhost:6274/oauth/callback/debug"

StepHandler = Callable[[FlowState], Awaitable[FlowState]]


class OAuthStateMachine:
    """Executes OAuth flow steps against one credential store.

    Usage:
        machine = OAuthStateMachine(store)
        state = FlowState(server_url="https://mcp.example.com")
        state = await machine.execute_step(state)   # metadata discovery
        state = await machine.execute_step(state)   # client registration
        ...
    """

    def __init__(
        self,
        store: CredentialStore,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        scope: str | None = None,
        client_name: str = DEFAULT_CLIENT_NAME,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
        on_status: Callable[[str], None] | None = None,
    ):
        self.store = store
        self.redirect_uri = redirect_uri
        self.scope = scope
        self.client_name = client_name
        self.timeout = timeout
        self.http_client = http_client
        self.on_status = on_status or (lambda msg: None)

        self._handlers: dict[OAuthStep, StepHandler] = {
            OAuthStep.METADATA_DISCOVERY: self._discover_metadata,
            OAuthStep.CLIENT_REGISTRATION: self._register_client,
            OAuthStep.AUTHORIZATION_REDIRECT: self._prepare_authorization,
            OAuthStep.AUTHORIZATION_CODE: self._accept_authorization_code,
            OAuthStep.TOKEN_REQUEST: self._request_tokens,
        }

    def _emit_status(self, message: str) -> None:
        logger.info(message)
        self.on_status(message)

    def _succeed(self, state: FlowState, kind: str, message: str, **changes) -> FlowState:
        self._emit_status(message)
        return replace(
            state,
            latest_error=None,
            status_message=StatusMessage(kind, message),
            **changes,
        )

    async def execute_step(self, state: FlowState) -> FlowState:
        """Run the current step and return the resulting state.

        Flow errors never escape: they come back in ``latest_error`` with the
        step unchanged. Cancellation propagates, and a cancelled step leaves
        nothing persisted beyond what earlier steps stored.
        """
        if state.step is OAuthStep.COMPLETE:
            tokens = state.tokens or self.store.get_tokens(state.server_url)
            return replace(
                state,
                tokens=tokens,
                latest_error=None,
                status_message=StatusMessage("success", "Authentication complete"),
            )

        handler = self._handlers[state.step]
        logger.debug(f"Executing step {state.step.value} for {state.server_url}")

        try:
            return await handler(state)
        except OAuthFlowError as e:
            logger.warning(f"Step {state.step.value} failed for {state.server_url}: {e}")
            self.on_status(f"Error: {e}")
            return replace(
                state,
                latest_error=e,
                status_message=StatusMessage("error", str(e)),
            )

    # Preconditions

    def _require_metadata(self, state: FlowState) -> AuthServerMetadata:
        if state.metadata is None:
            raise ValidationError(
                "Authorization server metadata is missing; restart from metadata discovery"
            )
        return state.metadata

    def _require_client(self, state: FlowState) -> Registered:
        if not isinstance(state.client, Registered):
            raise ValidationError(
                "Client registration is missing; restart from metadata discovery"
            )
        return state.client

    def _require_verifier(self, server_url: str) -> str:
        verifier = self.store.get_code_verifier(server_url)
        if not verifier:
            raise ValidationError(
                "PKCE code verifier not found in storage; "
                "the authorization request must be made again"
            )
        return verifier

    def _redirect_uri_for(self, client: Registered) -> str:
        """The redirect URI to use with a client.

        A registered client is bound to the URIs it registered with, so when
        the configured URI is not among them the first registered one wins.
        """
        if client.redirect_uris and self.redirect_uri not in client.redirect_uris:
            logger.warning(
                f"Configured redirect URI {self.redirect_uri} is not registered for client "
                f"{client.client_id}; using {client.redirect_uris[0]}"
            )
            return client.redirect_uris[0]
        return self.redirect_uri

    # Steps

    async def _discover_metadata(self, state: FlowState) -> FlowState:
        server_url = normalize_server_url(state.server_url)

        metadata = await discover(server_url, http_client=self.http_client, timeout=self.timeout)
        self.store.save_server_metadata(server_url, metadata)

        if metadata.is_default:
            message = f"No metadata document found; using default endpoints under {metadata.issuer}"
        else:
            message = f"Discovered authorization server {metadata.issuer}"

        return self._succeed(
            state,
            "info",
            message,
            server_url=server_url,
            step=OAuthStep.CLIENT_REGISTRATION,
            metadata=metadata,
        )

    async def _register_client(self, state: FlowState) -> FlowState:
        metadata = self._require_metadata(state)

        stored = self.store.get_client_information(state.server_url)
        if isinstance(stored, Registered):
            return self._succeed(
                state,
                "info",
                f"Using stored client {stored.client_id}",
                step=OAuthStep.AUTHORIZATION_REDIRECT,
                client=stored,
            )

        if not metadata.supports_dcr():
            raise FatalConfigurationError(
                f"Authorization server {metadata.issuer} has no registration endpoint "
                f"and no client is stored for {state.server_url}"
            )

        self._emit_status("Registering client dynamically...")
        client = await register_client(
            metadata,
            [self.redirect_uri],
            client_name=self.client_name,
            scope=self.scope,
            http_client=self.http_client,
            timeout=self.timeout,
        )
        self.store.save_client_information(state.server_url, client)

        return self._succeed(
            state,
            "success",
            f"Client registered with client_id {client.client_id}",
            step=OAuthStep.AUTHORIZATION_REDIRECT,
            client=client,
        )

    async def _prepare_authorization(self, state: FlowState) -> FlowState:
        metadata = self._require_metadata(state)
        client = self._require_client(state)

        pkce = generate_pkce_pair()
        csrf_state = generate_state()
        authorization_url = build_authorization_url(
            metadata,
            client,
            pkce.challenge,
            csrf_state,
            self._redirect_uri_for(client),
            scope=self.scope,
        )

        self.store.save_code_verifier(state.server_url, pkce.verifier)
        self.store.save_oauth_state(state.server_url, csrf_state)

        return self._succeed(
            state,
            "info",
            "Authorization URL ready; open it in a browser and copy the returned code",
            step=OAuthStep.AUTHORIZATION_CODE,
            authorization_url=authorization_url,
            authorization_code="",
            returned_state=None,
        )

    async def _accept_authorization_code(self, state: FlowState) -> FlowState:
        response = parse_authorization_response(state.authorization_code)

        if response.error:
            raise ValidationError(
                "Authorization server returned an error",
                code=response.error,
                description=response.error_description,
            )

        if not response.code:
            raise ValidationError("You need to provide an authorization code")

        returned_state = state.returned_state if state.returned_state is not None else response.state
        if returned_state is not None:
            expected = self.store.get_oauth_state(state.server_url)
            if expected is None or not hmac.compare_digest(
                returned_state.encode("utf-8"), expected.encode("utf-8")
            ):
                raise StateMismatchError(
                    "State mismatch in authorization response - possible CSRF attack"
                )

        self._require_verifier(state.server_url)

        return self._succeed(
            state,
            "info",
            "Authorization code accepted",
            step=OAuthStep.TOKEN_REQUEST,
            authorization_code=response.code,
            returned_state=returned_state,
        )

    async def _request_tokens(self, state: FlowState) -> FlowState:
        metadata = self._require_metadata(state)
        client = self._require_client(state)

        code = parse_authorization_response(state.authorization_code).code
        if not code:
            raise ValidationError("You need to provide an authorization code")

        verifier = self._require_verifier(state.server_url)

        self._emit_status("Exchanging code for tokens...")
        tokens = await exchange_token(
            metadata,
            client,
            AuthorizationCodeGrant(
                code=code,
                code_verifier=verifier,
                redirect_uri=self._redirect_uri_for(client),
            ),
            http_client=self.http_client,
            timeout=self.timeout,
        )

        self.store.save_tokens(state.server_url, tokens)
        self.store.clear_authorization_request(state.server_url)

        return self._succeed(
            state,
            "success",
            "Authentication complete",
            step=OAuthStep.COMPLETE,
            tokens=tokens,
            authorization_code="",
            returned_state=None,
        )

    # Refresh

    async def refresh(self, state: FlowState) -> FlowState:
        """Refresh stored tokens without re-running the authorization steps.

        Uses stored metadata (or default endpoints, without a discovery
        request) and the stored client. On success the state is ``complete``;
        on failure it is returned unchanged with the error attached, and the
        caller has to restart from metadata discovery.
        """
        try:
            server_url = normalize_server_url(state.server_url)

            tokens = state.tokens or self.store.get_tokens(server_url)
            if tokens is None or not tokens.has_refresh_token():
                raise ValidationError(
                    f"No refresh token stored for {server_url}; run the full flow instead"
                )

            client = state.client
            if not isinstance(client, Registered):
                client = self.store.get_client_information(server_url)
            if not isinstance(client, Registered):
                raise FatalConfigurationError(
                    f"No client stored for {server_url}; cannot refresh without a client_id"
                )

            metadata = (
                state.metadata
                or self.store.get_server_metadata(server_url)
                or default_metadata(server_url)
            )

            self._emit_status("Refreshing token...")
            new_tokens = await exchange_token(
                metadata,
                client,
                RefreshTokenGrant(refresh_token=tokens.refresh_token),  # type: ignore[arg-type]
                http_client=self.http_client,
                timeout=self.timeout,
            )
            if not new_tokens.has_refresh_token():
                new_tokens = replace(new_tokens, refresh_token=tokens.refresh_token)

            self.store.save_tokens(server_url, new_tokens)

        except OAuthFlowError as e:
            logger.warning(f"Token refresh failed for {state.server_url}: {e}")
            self.on_status(f"Error: {e}")
            return replace(state, latest_error=e, status_message=StatusMessage("error", str(e)))

        return self._succeed(
            state,
            "success",
            "Token refreshed successfully",
            server_url=server_url,
            step=OAuthStep.COMPLETE,
            metadata=metadata,
            client=client,
            tokens=new_tokens,
        )
