"""Tests for authorization URL building and redirect parsing."""

from urllib.parse import parse_qsl, urlparse

from mcp_auth_debugger.oauth.authorization import (
    AuthorizationResponse,
    build_authorization_url,
    parse_authorization_response,
)
from mcp_auth_debugger.oauth.discovery import AuthServerMetadata, default_metadata
from mcp_auth_debugger.oauth.tokens import Registered

REDIRECT_URI = "http://localhost:6274/oauth/callback/debug"


class TestBuildAuthorizationUrl:
    """Tests for build_authorization_url."""

    def test_parameters_in_order(self, metadata, registered_client):
        url = build_authorization_url(metadata, registered_client, "challenge", "state123", REDIRECT_URI)

        parsed = urlparse(url)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://auth.example.com/authorize"
        assert parse_qsl(parsed.query) == [
            ("response_type", "code"),
            ("client_id", "abc123"),
            ("redirect_uri", REDIRECT_URI),
            ("scope", "read write"),
            ("state", "state123"),
            ("code_challenge", "challenge"),
            ("code_challenge_method", "S256"),
        ]

    def test_explicit_scope_overrides_advertised(self, metadata, registered_client):
        url = build_authorization_url(
            metadata, registered_client, "c", "s", REDIRECT_URI, scope="mcp:tools"
        )
        assert dict(parse_qsl(urlparse(url).query))["scope"] == "mcp:tools"

    def test_scope_omitted_when_unknown(self, registered_client):
        url = build_authorization_url(
            default_metadata("https://mcp.example.com"), registered_client, "c", "s", REDIRECT_URI
        )
        assert "scope" not in dict(parse_qsl(urlparse(url).query))

    def test_existing_query_kept(self):
        metadata = AuthServerMetadata(
            issuer="https://auth.example.com",
            authorization_endpoint="https://auth.example.com/authorize?tenant=acme",
            token_endpoint="https://auth.example.com/token",
        )
        url = build_authorization_url(metadata, Registered(client_id="abc123"), "c", "s", REDIRECT_URI)

        params = parse_qsl(urlparse(url).query)
        assert params[0] == ("tenant", "acme")
        assert ("client_id", "abc123") in params

    def test_values_are_encoded(self, metadata, registered_client):
        url = build_authorization_url(metadata, registered_client, "c", "s", REDIRECT_URI)
        assert "redirect_uri=http%3A%2F%2Flocalhost%3A6274%2Foauth%2Fcallback%2Fdebug" in url
        assert "scope=read+write" in url


class TestParseAuthorizationResponse:
    """Tests for parse_authorization_response."""

    def test_bare_code(self):
        assert parse_authorization_response("  xyz  ") == AuthorizationResponse(code="xyz")

    def test_empty(self):
        response = parse_authorization_response("")
        assert response.code is None
        assert not response.is_success()

    def test_full_redirect_url(self):
        response = parse_authorization_response(f"{REDIRECT_URI}?code=xyz&state=abc")
        assert response.code == "xyz"
        assert response.state == "abc"
        assert response.is_success()

    def test_query_string_only(self):
        response = parse_authorization_response("?code=xyz&state=abc")
        assert response == AuthorizationResponse(code="xyz", state="abc")

    def test_query_without_question_mark(self):
        assert parse_authorization_response("code=xyz&state=abc").code == "xyz"

    def test_error_response(self):
        response = parse_authorization_response(
            f"{REDIRECT_URI}?error=access_denied&error_description=User%20denied%20access&state=abc"
        )
        assert response.error == "access_denied"
        assert response.error_description == "User denied access"
        assert response.code is None
        assert not response.is_success()
