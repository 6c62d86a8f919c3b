"""Flow state owned by the caller and passed through every step."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from .discovery import AuthServerMetadata
from .errors import OAuthFlowError
from .tokens import UNREGISTERED, ClientRegistration, Registered, TokenSet


class OAuthStep(str, Enum):
    """Steps of the authorization code flow, in their fixed order."""

    METADATA_DISCOVERY = "metadata_discovery"
    CLIENT_REGISTRATION = "client_registration"
    AUTHORIZATION_REDIRECT = "authorization_redirect"
    AUTHORIZATION_CODE = "authorization_code"
    TOKEN_REQUEST = "token_request"
    COMPLETE = "complete"

    @property
    def index(self) -> int:
        return STEP_ORDER.index(self)

    def next(self) -> "OAuthStep":
        """The step after this one. ``COMPLETE`` is its own successor."""
        if self is OAuthStep.COMPLETE:
            return self
        return STEP_ORDER[self.index + 1]


STEP_ORDER: list[OAuthStep] = list(OAuthStep)


@dataclass(frozen=True)
class StatusMessage:
    """Inline feedback for the operator. ``kind`` is success, error or info."""

    kind: str
    message: str


@dataclass(frozen=True)
class FlowState:
    """Everything gathered so far for one debugging session.

    Instances are immutable; each step returns a new one. ``in_progress`` is
    true on the value handed to a running step. The driver also tracks running
    servers itself, so a second trigger is refused even when it is made with
    an older FlowState value.
    """

    server_url: str
    step: OAuthStep = OAuthStep.METADATA_DISCOVERY
    metadata: AuthServerMetadata | None = None
    client: ClientRegistration = UNREGISTERED
    authorization_url: str | None = None
    authorization_code: str = ""
    returned_state: str | None = None
    tokens: TokenSet | None = None
    latest_error: OAuthFlowError | None = None
    status_message: StatusMessage | None = None
    in_progress: bool = False

    @property
    def is_complete(self) -> bool:
        return self.step is OAuthStep.COMPLETE

    @property
    def client_id(self) -> str | None:
        if isinstance(self.client, Registered):
            return self.client.client_id
        return None

    def with_authorization_code(self, code: str, state: str | None = None) -> "FlowState":
        """Supply the code (and the ``state`` echoed with it) for the next step."""
        return replace(self, authorization_code=code, returned_state=state)

    def to_dict(self) -> dict[str, Any]:
        """Non-secret summary for display; tokens and code are not included."""
        return {
            "server_url": self.server_url,
            "step": self.step.value,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "client_id": self.client_id,
            "authorization_url": self.authorization_url,
            "has_tokens": self.tokens is not None,
            "latest_error": self.latest_error.to_dict() if self.latest_error else None,
            "status": (
                {"type": self.status_message.kind, "message": self.status_message.message}
                if self.status_message
                else None
            ),
        }
