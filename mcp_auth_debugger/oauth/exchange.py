"""Token endpoint client for the authorization code and refresh grants."""

import logging
from dataclasses import dataclass
from typing import Union

import httpx

from .discovery import DEFAULT_TIMEOUT, AuthServerMetadata
from .errors import NetworkError, TokenError
from .tokens import Registered, TokenSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationCodeGrant:
    """Exchange an authorization code, proving possession of the PKCE verifier."""

    code: str
    code_verifier: str
    redirect_uri: str

    grant_type = "authorization_code"

    def form_fields(self) -> dict[str, str]:
        return {
            "grant_type": self.grant_type,
            "code": self.code,
            "code_verifier": self.code_verifier,
            "redirect_uri": self.redirect_uri,
        }


@dataclass(frozen=True)
class RefreshTokenGrant:
    """Trade a refresh token for a new access token."""

    refresh_token: str

    grant_type = "refresh_token"

    def form_fields(self) -> dict[str, str]:
        return {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
        }


TokenGrant = Union[AuthorizationCodeGrant, RefreshTokenGrant]


async def exchange_token(
    metadata: AuthServerMetadata,
    client: Registered,
    grant: TokenGrant,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> TokenSet:
    """POST a grant to the token endpoint.

    Args:
        metadata: Authorization server metadata
        client: The registered client
        grant: Authorization code or refresh token grant
        http_client: Optional HTTP client
        timeout: Request timeout in seconds when creating a client

    Returns:
        The issued TokenSet

    Raises:
        TokenError: If the server rejects the grant; ``code`` holds the
            server's ``error`` value (e.g. "invalid_grant") unmodified
        NetworkError: On transport failures
    """
    http = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    form = grant.form_fields()
    form["client_id"] = client.client_id
    if client.is_confidential():
        form["client_secret"] = client.client_secret  # type: ignore[assignment]

    try:
        logger.debug(f"Requesting {grant.grant_type} grant from {metadata.token_endpoint}")
        response = await http.post(
            metadata.token_endpoint,
            data=form,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
        )

        if not 200 <= response.status_code < 300:
            error, description = None, None
            try:
                error_data = response.json()
                # Only extract the standard error fields, never the raw body
                if isinstance(error_data, dict):
                    error = error_data.get("error")
                    description = error_data.get("error_description")
            except ValueError:
                pass

            raise TokenError(
                f"Token request failed (HTTP {response.status_code})",
                code=error,
                description=description,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TokenError("Token response was not valid JSON", code="invalid_response") from e

        if not isinstance(data, dict) or not data.get("access_token"):
            raise TokenError("Token response missing access_token", code="invalid_response")

        if not isinstance(data["access_token"], str):
            raise TokenError("Token response access_token must be a string", code="invalid_response")

        try:
            return TokenSet.from_token_response(data)
        except (ValueError, TypeError, OverflowError) as e:
            # expires_in that is not a number of seconds
            raise TokenError(
                f"Token response has an invalid expires_in: {data.get('expires_in')!r}",
                code="invalid_response",
            ) from e

    except httpx.RequestError as e:
        raise NetworkError(f"Network error during token request: {e}") from e
    finally:
        if should_close:
            await http.aclose()
