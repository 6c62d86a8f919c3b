"""Authorization request construction and response parsing.

Both functions are pure: nothing here touches the network or the store.
"""

from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .discovery import AuthServerMetadata
from .pkce import CHALLENGE_METHOD
from .tokens import Registered


@dataclass(frozen=True)
class AuthorizationResponse:
    """Parameters returned on the redirect back from the authorization server.

    Attributes:
        code: The authorization code
        state: The echoed ``state`` parameter, if the server sent one
        error: Error code if authorization was denied or failed
        error_description: Human-readable error description
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        """Check if the response carries a code and no error."""
        return bool(self.code) and self.error is None


def build_authorization_url(
    metadata: AuthServerMetadata,
    client: Registered,
    code_challenge: str,
    state: str,
    redirect_uri: str,
    scope: str | None = None,
) -> str:
    """Build the URL the operator's browser must visit.

    The scope is the explicit one when given, otherwise every scope the server
    advertises, otherwise omitted. Query parameters already present on the
    authorization endpoint are kept.
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": client.client_id,
        "redirect_uri": redirect_uri,
    }

    if scope:
        params["scope"] = scope
    elif metadata.scopes_supported:
        params["scope"] = " ".join(metadata.scopes_supported)

    params["state"] = state
    params["code_challenge"] = code_challenge
    params["code_challenge_method"] = CHALLENGE_METHOD

    endpoint = urlparse(metadata.authorization_endpoint)
    query = parse_qsl(endpoint.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunparse(endpoint._replace(query=urlencode(query)))


def parse_authorization_response(value: str) -> AuthorizationResponse:
    """Interpret what the operator pasted after the redirect.

    Accepts either the bare authorization code or the full redirect URL (or
    just its query string), in which case ``code``, ``state``, ``error`` and
    ``error_description`` are extracted from it.
    """
    value = value.strip()
    if not value:
        return AuthorizationResponse()

    query: str | None = None
    if "://" in value:
        query = urlparse(value).query
    elif value.startswith("?"):
        query = value[1:]
    elif "code=" in value or "error=" in value:
        query = value

    if query is None:
        return AuthorizationResponse(code=value)

    params = dict(parse_qsl(query, keep_blank_values=True))
    return AuthorizationResponse(
        code=params.get("code") or None,
        state=params.get("state"),
        error=params.get("error") or None,
        error_description=params.get("error_description"),
    )
