"""Authorization server metadata discovery per RFC 8414.

Discovery never fails just because a server has no metadata document: a 404
from every well-known location yields default metadata with the conventional
``/authorize``, ``/token`` and ``/register`` endpoints under the server origin.
Anything else that goes wrong on the wire is a NetworkError, and a document
that is present but unusable is a DiscoveryError.
"""

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx

from .errors import DiscoveryError, NetworkError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

WELL_KNOWN_SUFFIX = "oauth-authorization-server"

DEFAULT_AUTHORIZATION_PATH = "/authorize"
DEFAULT_TOKEN_PATH = "/token"
DEFAULT_REGISTRATION_PATH = "/register"

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


def _http_status_hint(status_code: int) -> str:
    """Get a user-friendly hint for common HTTP status codes."""
    hints = {
        401: "Server requires authentication for its metadata document",
        403: "Access forbidden - check if the metadata document is public",
        500: "Server error - the authorization server may be experiencing issues",
        502: "Bad gateway - there may be a proxy or network issue",
        503: "Service unavailable - the server may be temporarily down",
    }
    return hints.get(status_code, "")


def normalize_server_url(server_url: str | None) -> str:
    """Normalize a server URL into the identity used to scope persisted state.

    Scheme and host are lowercased, the default port for the scheme (443 for
    https, 80 for http) is dropped, the path loses its trailing slash, and
    query string and fragment are dropped.

    Raises:
        ValidationError: If the URL is empty or not an absolute http(s) URL
    """
    if not server_url or not server_url.strip():
        raise ValidationError("Please enter a server URL before authenticating")

    parsed = urlparse(server_url.strip())
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Server URL must be an absolute http(s) URL, got: {server_url}")

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    try:
        port = parsed.port
    except ValueError:
        raise ValidationError(f"Server URL has an invalid port: {server_url}") from None
    if (scheme, port) in (("https", 443), ("http", 80)):
        netloc = netloc.rsplit(":", 1)[0]

    path = parsed.path.rstrip("/")
    return f"{scheme}://{netloc}{path}"


def server_origin(server_url: str) -> str:
    """Scheme and authority of a server URL, without any path."""
    parsed = urlparse(server_url)
    return f"{parsed.scheme}://{parsed.netloc}"


def _is_loopback(url: str) -> bool:
    return (urlparse(url).hostname or "") in LOOPBACK_HOSTS


def _require_endpoint(
    data: dict[str, Any],
    name: str,
    required: bool = True,
    allow_http: bool = False,
) -> str | None:
    """Validate that a metadata field holds an absolute, secure URL.

    Plain http is accepted for loopback hosts, and for any host when the
    server itself is addressed over http (``allow_http``).
    """
    value = data.get(name)
    if value is None:
        if required:
            raise DiscoveryError(f"Authorization server metadata missing required field: {name}")
        return None

    if not isinstance(value, str):
        raise DiscoveryError(f"Metadata field {name} must be a string URL, got: {value!r}")

    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise DiscoveryError(f"Metadata field {name} is not a valid URL: {value}")

    if parsed.scheme != "https" and not allow_http and not _is_loopback(value):
        raise DiscoveryError(f"Metadata field {name} must use HTTPS for security, got: {value}")

    return value


def _string_list(data: dict[str, Any], name: str) -> list[str] | None:
    """Read an optional list-of-strings field; ``null`` counts as absent.

    Raises:
        DiscoveryError: If the value is present but not a list of strings
    """
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise DiscoveryError(f"Metadata field {name} must be a list of strings, got: {value!r}")
    return value


@dataclass(frozen=True)
class AuthServerMetadata:
    """OAuth 2.0 Authorization Server Metadata per RFC 8414.

    ``is_default`` is set when the record was synthesized because the server
    publishes no metadata document.
    """

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str | None = None
    revocation_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    response_types_supported: list[str] = field(default_factory=lambda: ["code"])
    grant_types_supported: list[str] = field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    code_challenge_methods_supported: list[str] = field(default_factory=lambda: ["S256"])
    token_endpoint_auth_methods_supported: list[str] | None = None
    is_default: bool = False

    def supports_pkce(self) -> bool:
        """Check if the server advertises PKCE with S256."""
        return "S256" in self.code_challenge_methods_supported

    def supports_dcr(self) -> bool:
        """Check if the server supports Dynamic Client Registration."""
        return self.registration_endpoint is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any], server_url: str) -> "AuthServerMetadata":
        """Parse and validate a metadata document.

        Args:
            data: Decoded JSON document
            server_url: Server identity, used as issuer when the document has none

        Raises:
            DiscoveryError: If required endpoints are missing or invalid
        """
        if not isinstance(data, dict):
            raise DiscoveryError("Authorization server metadata must be a JSON object")

        allow_http = urlparse(server_url).scheme == "http"

        issuer = data.get("issuer") or server_origin(server_url)
        if not isinstance(issuer, str):
            raise DiscoveryError(f"Metadata field issuer must be a string, got: {issuer!r}")

        return cls(
            issuer=issuer,
            authorization_endpoint=_require_endpoint(data, "authorization_endpoint", allow_http=allow_http),  # type: ignore[arg-type]
            token_endpoint=_require_endpoint(data, "token_endpoint", allow_http=allow_http),  # type: ignore[arg-type]
            registration_endpoint=_require_endpoint(
                data, "registration_endpoint", required=False, allow_http=allow_http
            ),
            revocation_endpoint=_require_endpoint(
                data, "revocation_endpoint", required=False, allow_http=allow_http
            ),
            scopes_supported=_string_list(data, "scopes_supported"),
            response_types_supported=_string_list(data, "response_types_supported") or ["code"],
            grant_types_supported=_string_list(data, "grant_types_supported")
            or ["authorization_code", "refresh_token"],
            code_challenge_methods_supported=_string_list(data, "code_challenge_methods_supported")
            or ["S256"],
            token_endpoint_auth_methods_supported=_string_list(
                data, "token_endpoint_auth_methods_supported"
            ),
            is_default=data.get("is_default") is True,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize in RFC 8414 shape (plus ``is_default``) for storage."""
        data: dict[str, Any] = {
            "issuer": self.issuer,
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "response_types_supported": list(self.response_types_supported),
            "grant_types_supported": list(self.grant_types_supported),
            "code_challenge_methods_supported": list(self.code_challenge_methods_supported),
            "is_default": self.is_default,
        }
        if self.registration_endpoint:
            data["registration_endpoint"] = self.registration_endpoint
        if self.revocation_endpoint:
            data["revocation_endpoint"] = self.revocation_endpoint
        if self.scopes_supported is not None:
            data["scopes_supported"] = list(self.scopes_supported)
        if self.token_endpoint_auth_methods_supported is not None:
            data["token_endpoint_auth_methods_supported"] = list(
                self.token_endpoint_auth_methods_supported
            )
        return data


def default_metadata(server_url: str) -> AuthServerMetadata:
    """Synthesize metadata for a server that publishes no discovery document.

    Endpoints are the conventional paths resolved against the server origin;
    any path on the server URL is discarded.
    """
    origin = server_origin(normalize_server_url(server_url))
    return AuthServerMetadata(
        issuer=origin,
        authorization_endpoint=urljoin(origin, DEFAULT_AUTHORIZATION_PATH),
        token_endpoint=urljoin(origin, DEFAULT_TOKEN_PATH),
        registration_endpoint=urljoin(origin, DEFAULT_REGISTRATION_PATH),
        is_default=True,
    )


def construct_well_known_uris(server_url: str) -> list[str]:
    """Metadata document locations to try, in order.

    RFC 8414 Section 3 inserts the well-known segment between host and path,
    so ``https://host/tenant`` is tried at
    ``https://host/.well-known/oauth-authorization-server/tenant`` first. The
    root location follows as a fallback for servers that ignore the path.
    """
    parsed = urlparse(server_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    root = f"{origin}/.well-known/{WELL_KNOWN_SUFFIX}"

    path = parsed.path.rstrip("/")
    if path:
        return [f"{root}{path}", root]
    return [root]


async def fetch_metadata_document(
    url: str,
    server_url: str,
    http_client: httpx.AsyncClient,
) -> AuthServerMetadata:
    """Fetch and parse a single metadata document.

    Raises:
        NotFoundError: On HTTP 404
        NetworkError: On transport failures or any other non-200 status
        DiscoveryError: If the body is not valid metadata
    """
    logger.debug(f"Fetching authorization server metadata from {url}")

    try:
        response = await http_client.get(url, headers={"Accept": "application/json"})
    except httpx.ConnectError as e:
        raise NetworkError(
            f"Could not connect to {url}: {e}. "
            f"Check that the URL is correct and the server is reachable."
        ) from e
    except httpx.TimeoutException as e:
        raise NetworkError(
            f"Timeout fetching metadata from {url}: {e}. "
            f"The server may be slow or unresponsive."
        ) from e
    except httpx.RequestError as e:
        raise NetworkError(f"Network error fetching metadata from {url}: {e}") from e

    if response.status_code == 404:
        raise NotFoundError(f"No metadata document at {url}")

    if response.status_code != 200:
        error_msg = f"Failed to fetch metadata from {url}: HTTP {response.status_code}"
        hint = _http_status_hint(response.status_code)
        if hint:
            error_msg += f". {hint}"
        raise NetworkError(error_msg)

    try:
        data = response.json()
    except (ValueError, TypeError) as e:
        raise DiscoveryError(f"Metadata response from {url} was not valid JSON: {e}") from e

    return AuthServerMetadata.from_dict(data, server_url)


async def discover(
    server_url: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> AuthServerMetadata:
    """Resolve authorization server metadata for a server.

    Args:
        server_url: The target server URL (normalized internally)
        http_client: Optional HTTP client to use
        timeout: Request timeout in seconds when creating a client

    Returns:
        Discovered metadata, or default metadata when no document exists

    Raises:
        ValidationError: If the server URL is invalid
        NetworkError: On transport failures or unexpected HTTP status
        DiscoveryError: If a metadata document exists but is invalid
    """
    server_url = normalize_server_url(server_url)

    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    try:
        for url in construct_well_known_uris(server_url):
            try:
                metadata = await fetch_metadata_document(url, server_url, client)
            except NotFoundError:
                logger.debug(f"No metadata document at {url}")
                continue

            logger.debug(f"Discovered authorization server {metadata.issuer} from {url}")
            if not metadata.supports_pkce():
                logger.warning(
                    f"Authorization server {metadata.issuer} does not advertise S256 PKCE; "
                    f"continuing anyway"
                )
            return metadata

        logger.info(f"No metadata document for {server_url}, using default endpoints")
        return default_metadata(server_url)

    finally:
        if should_close:
            await client.aclose()
