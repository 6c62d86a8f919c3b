"""OAuth 2.0 authorization code + PKCE flow as an explicit state machine.

Main Components:
    AuthDebugger: Caller-facing entry points (guided and quick drivers)
    OAuthStateMachine: Executes one flow step at a time
    FlowState: Caller-owned state passed through every step
    CredentialStore: Encrypted per-server persistence

Quick Start:
    from mcp_auth_debugger.oauth import AuthDebugger

    debugger = AuthDebugger()

    # Guided flow, one step per call
    state = debugger.start_flow(server_url)
    state = await debugger.proceed(state)

    # Quick flow
    tokens = await debugger.quick_run(server_url, code_provider=ask_operator)
"""

from .authorization import AuthorizationResponse, build_authorization_url, parse_authorization_response
from .discovery import (
    AuthServerMetadata,
    construct_well_known_uris,
    default_metadata,
    discover,
    normalize_server_url,
)
from .errors import (
    DiscoveryError,
    FatalConfigurationError,
    NetworkError,
    NotFoundError,
    OAuthFlowError,
    RegistrationError,
    StateMismatchError,
    TokenError,
    ValidationError,
)
from .exchange import AuthorizationCodeGrant, RefreshTokenGrant, exchange_token
from .machine import OAuthStateMachine
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_pkce_pair, generate_state
from .registration import register_client
from .state import FlowState, OAuthStep, StatusMessage
from .store import CredentialDecryptionError, CredentialStore, CredentialStoreError, SessionKeys
from .tokens import UNREGISTERED, ClientRegistration, Registered, TokenSet, Unregistered

__all__ = [
    # Drivers (main entry point)
    "AuthDebugger",
    "AuthStatus",
    # State machine
    "OAuthStateMachine",
    "FlowState",
    "OAuthStep",
    "StatusMessage",
    # Errors
    "OAuthFlowError",
    "NetworkError",
    "NotFoundError",
    "DiscoveryError",
    "ValidationError",
    "StateMismatchError",
    "RegistrationError",
    "TokenError",
    "FatalConfigurationError",
    # Discovery
    "discover",
    "default_metadata",
    "construct_well_known_uris",
    "normalize_server_url",
    "AuthServerMetadata",
    # Registration
    "register_client",
    "ClientRegistration",
    "Registered",
    "Unregistered",
    "UNREGISTERED",
    # Authorization
    "build_authorization_url",
    "parse_authorization_response",
    "AuthorizationResponse",
    # Tokens
    "exchange_token",
    "AuthorizationCodeGrant",
    "RefreshTokenGrant",
    "TokenSet",
    # Storage
    "CredentialStore",
    "CredentialStoreError",
    "CredentialDecryptionError",
    "SessionKeys",
    # PKCE
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    "PKCEPair",
]


# The drivers depend on the settings module, which itself imports from this
# package, so they are resolved lazily.
def __getattr__(name: str) -> object:
    """Lazy import of the driver classes."""
    if name in ("AuthDebugger", "AuthStatus"):
        from .manager import AuthDebugger, AuthStatus
        return {"AuthDebugger": AuthDebugger, "AuthStatus": AuthStatus}[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
