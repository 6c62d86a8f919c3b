"""Token and client registration records.

TokenSet holds what the token endpoint issued. ClientRegistration is a tagged
variant: a server either has a ``Registered`` client or is ``Unregistered``.
Code that needs a client id must narrow with ``isinstance`` first, which keeps
the "no client and nowhere to register one" case an explicit branch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Union

logger = logging.getLogger(__name__)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by the authorization server.

    Attributes:
        access_token: The access token string
        token_type: Token type as returned by the server (usually "Bearer")
        refresh_token: Optional refresh token
        expires_at: Absolute expiry computed from ``expires_in`` (UTC)
        scope: Space-separated granted scopes
        issued_at: When the token response was received (UTC)
    """

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str | None = None
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self, buffer_seconds: int = 30) -> bool:
        """Check whether the access token expires within ``buffer_seconds``.

        Tokens without expiry information are treated as valid; the server
        answers 401 if they are not.
        """
        if self.expires_at is None:
            return False

        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        return datetime.now(timezone.utc) >= expires_at - timedelta(seconds=buffer_seconds)

    def has_refresh_token(self) -> bool:
        """Check if this token set carries a usable refresh token."""
        return bool(self.refresh_token)

    def get_auth_header(self) -> str:
        """Authorization header value, always with a capitalized "Bearer"."""
        return f"Bearer {self.access_token}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage."""
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "issued_at": self.issued_at.isoformat(),
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expires_at:
            data["expires_at"] = self.expires_at.isoformat()
        if self.scope:
            data["scope"] = self.scope
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenSet":
        """Deserialize a record written by ``to_dict``."""
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            refresh_token=data.get("refresh_token"),
            expires_at=_parse_datetime(data.get("expires_at")),
            scope=data.get("scope"),
            issued_at=_parse_datetime(data.get("issued_at")) or datetime.now(timezone.utc),
        )

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> "TokenSet":
        """Build from a token endpoint JSON body.

        Raises:
            KeyError: If ``access_token`` is missing
        """
        now = datetime.now(timezone.utc)

        expires_at = None
        if response.get("expires_in") is not None:
            expires_at = now + timedelta(seconds=int(response["expires_in"]))
        else:
            logger.debug("Token response has no expires_in; expiry unknown")

        return cls(
            access_token=response["access_token"],
            token_type=response.get("token_type", "Bearer"),
            refresh_token=response.get("refresh_token"),
            expires_at=expires_at,
            scope=response.get("scope"),
            issued_at=now,
        )


@dataclass(frozen=True)
class Registered:
    """A client identity known to the authorization server."""

    client_id: str
    client_secret: str | None = None
    redirect_uris: tuple[str, ...] = ()
    grant_types: tuple[str, ...] = ()

    def is_confidential(self) -> bool:
        """Confidential clients authenticate to the token endpoint with a secret."""
        return bool(self.client_secret)

    def to_dict(self) -> dict[str, Any]:
        """Serialize in RFC 7591 client information shape."""
        data: dict[str, Any] = {"client_id": self.client_id}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        if self.redirect_uris:
            data["redirect_uris"] = list(self.redirect_uris)
        if self.grant_types:
            data["grant_types"] = list(self.grant_types)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Registered":
        """Deserialize a stored or server-returned client information record."""
        return cls(
            client_id=data["client_id"],
            client_secret=data.get("client_secret"),
            redirect_uris=tuple(data.get("redirect_uris") or ()),
            grant_types=tuple(data.get("grant_types") or ()),
        )


@dataclass(frozen=True)
class Unregistered:
    """No client identity exists yet for this server."""


UNREGISTERED = Unregistered()

ClientRegistration = Union[Registered, Unregistered]
