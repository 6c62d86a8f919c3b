"""Error taxonomy for the OAuth debugging flow.

Every failure surfaced by a step is an OAuthFlowError subclass. Server
provided error codes (e.g. ``invalid_grant``) are carried verbatim in
``code`` and ``description`` so they can be displayed without rewording.
"""

from __future__ import annotations


class OAuthFlowError(Exception):
    """Base class for errors raised while driving the OAuth flow.

    Attributes:
        message: Human-readable summary of what failed
        code: Server-provided error code, if any (e.g. "invalid_client")
        description: Server-provided error description, if any
        retryable: Whether re-invoking the same step may succeed
    """

    retryable = False

    def __init__(
        self,
        message: str,
        code: str | None = None,
        description: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.description = description

    def __str__(self) -> str:
        if self.code and self.code not in self.message:
            detail = self.code
            if self.description:
                detail += f" - {self.description}"
            return f"{self.message}: {detail}"
        return self.message

    def to_dict(self) -> dict[str, str | bool | None]:
        """Serialize for JSON output."""
        return {
            "type": type(self).__name__,
            "message": str(self),
            "code": self.code,
            "description": self.description,
            "retryable": self.retryable,
        }


class NetworkError(OAuthFlowError):
    """Server unreachable, timed out, TLS failure or unexpected HTTP status."""

    retryable = True


class NotFoundError(OAuthFlowError):
    """Metadata document is absent (HTTP 404).

    Discovery converts this into default metadata; it never reaches the caller
    from a metadata step.
    """


class DiscoveryError(OAuthFlowError):
    """Metadata was fetched but could not be parsed or failed validation."""

    retryable = True


class ValidationError(OAuthFlowError):
    """Caller-supplied input is missing or invalid."""


class StateMismatchError(ValidationError):
    """Returned ``state`` does not match the persisted one (possible CSRF)."""


class RegistrationError(OAuthFlowError):
    """Authorization server rejected Dynamic Client Registration."""


class TokenError(OAuthFlowError):
    """Token endpoint rejected a code or refresh grant."""

    retryable = True


class FatalConfigurationError(OAuthFlowError):
    """No viable client identity: no registration endpoint and no stored client."""
