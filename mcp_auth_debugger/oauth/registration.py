"""Dynamic Client Registration (RFC 7591).

Registration happens at most once per server: once a client is stored it is
always reused, and a failed registration is never retried here.
"""

import logging
from typing import Any

import httpx

from .discovery import DEFAULT_TIMEOUT, AuthServerMetadata
from .errors import NetworkError, RegistrationError
from .tokens import Registered

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_NAME = "mcp-auth-debugger"
DEFAULT_CLIENT_URI = "https://github.com/modelcontextprotocol/inspector"

REGISTRATION_GRANT_TYPES = ["authorization_code"]
REGISTRATION_RESPONSE_TYPES = ["code"]


def build_registration_request(
    redirect_uris: list[str],
    client_name: str = DEFAULT_CLIENT_NAME,
    scope: str | None = None,
) -> dict[str, Any]:
    """Build the client metadata document sent to the registration endpoint."""
    request: dict[str, Any] = {
        "client_name": client_name,
        "client_uri": DEFAULT_CLIENT_URI,
        "redirect_uris": list(redirect_uris),
        "grant_types": list(REGISTRATION_GRANT_TYPES),
        "response_types": list(REGISTRATION_RESPONSE_TYPES),
        "token_endpoint_auth_method": "none",
    }
    if scope:
        request["scope"] = scope
    return request


def _error_fields(response: httpx.Response) -> tuple[str | None, str | None]:
    """Extract RFC 6749 ``error`` / ``error_description`` from an error body.

    The raw body is never returned: it might contain secrets.
    """
    try:
        data = response.json()
    except ValueError:
        return None, None
    if not isinstance(data, dict):
        return None, None
    return data.get("error"), data.get("error_description")


async def register_client(
    metadata: AuthServerMetadata,
    redirect_uris: list[str],
    client_name: str = DEFAULT_CLIENT_NAME,
    scope: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Registered:
    """Register a public client with the authorization server.

    Args:
        metadata: Authorization server metadata with a registration endpoint
        redirect_uris: Redirect URIs to register
        client_name: Human-readable client name shown on consent screens
        scope: Optional scope to request for the client
        http_client: Optional HTTP client
        timeout: Request timeout in seconds when creating a client

    Returns:
        The registered client

    Raises:
        RegistrationError: If the server has no registration endpoint, rejects
            the request, or answers without a client_id
        NetworkError: On transport failures
    """
    if not metadata.registration_endpoint:
        raise RegistrationError(
            f"Authorization server {metadata.issuer} does not support Dynamic Client Registration"
        )

    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    try:
        logger.debug(f"Registering client at {metadata.registration_endpoint}")
        response = await client.post(
            metadata.registration_endpoint,
            json=build_registration_request(redirect_uris, client_name, scope),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

        if not 200 <= response.status_code < 300:
            error, description = _error_fields(response)
            raise RegistrationError(
                f"Dynamic Client Registration failed (HTTP {response.status_code})",
                code=error,
                description=description,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RegistrationError(f"Registration response was not valid JSON: {e}") from e

        if not isinstance(data, dict) or not data.get("client_id"):
            raise RegistrationError("Registration response missing client_id")

        registered = Registered.from_dict(data)
        if not registered.redirect_uris:
            registered = Registered(
                client_id=registered.client_id,
                client_secret=registered.client_secret,
                redirect_uris=tuple(redirect_uris),
                grant_types=registered.grant_types or tuple(REGISTRATION_GRANT_TYPES),
            )
        return registered

    except httpx.RequestError as e:
        raise NetworkError(f"Network error during client registration: {e}") from e
    finally:
        if should_close:
            await client.aclose()
