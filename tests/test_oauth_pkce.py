"""Tests for PKCE and state generation."""

import base64
import hashlib
import re

import pytest

from mcp_auth_debugger.oauth.pkce import (
    CHALLENGE_METHOD,
    DEFAULT_VERIFIER_LENGTH,
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    VERIFIER_CHARS,
    PKCEPair,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce_pair,
    generate_state,
)


class TestGenerateCodeVerifier:
    """Tests for code verifier generation."""

    def test_default_length(self):
        assert len(generate_code_verifier()) == DEFAULT_VERIFIER_LENGTH

    @pytest.mark.parametrize("length", [MIN_VERIFIER_LENGTH, 100, MAX_VERIFIER_LENGTH])
    def test_bounds_accepted(self, length):
        assert len(generate_code_verifier(length=length)) == length

    def test_too_short_raises_error(self):
        with pytest.raises(ValueError, match="must be between"):
            generate_code_verifier(length=MIN_VERIFIER_LENGTH - 1)

    def test_too_long_raises_error(self):
        with pytest.raises(ValueError, match="must be between"):
            generate_code_verifier(length=MAX_VERIFIER_LENGTH + 1)

    def test_many_verifiers_are_unique_and_unreserved(self):
        """10,000 verifiers: all distinct, long enough, unreserved characters only."""
        verifiers = [generate_code_verifier() for _ in range(10_000)]

        assert len(set(verifiers)) == 10_000
        allowed = set(VERIFIER_CHARS)
        for verifier in verifiers:
            assert len(verifier) >= MIN_VERIFIER_LENGTH
            assert set(verifier) <= allowed


class TestGenerateCodeChallenge:
    """Tests for S256 code challenge generation."""

    def test_matches_sha256_base64url(self):
        verifier = generate_code_verifier()
        expected = (
            base64.urlsafe_b64encode(hashlib.sha256(verifier.encode("ascii")).digest())
            .decode("ascii")
            .rstrip("=")
        )
        assert generate_code_challenge(verifier) == expected

    def test_rfc7636_appendix_b_vector(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_no_padding(self):
        challenge = generate_code_challenge("test_verifier_string_that_is_long_enough_for_testing")
        assert "=" not in challenge
        assert len(challenge) == 43

    def test_deterministic(self):
        verifier = generate_code_verifier()
        assert generate_code_challenge(verifier) == generate_code_challenge(verifier)


class TestGeneratePKCEPair:
    """Tests for generating complete PKCE pairs."""

    def test_challenge_matches_verifier(self):
        pair = generate_pkce_pair()
        assert pair.challenge == generate_code_challenge(pair.verifier)
        assert pair.method == CHALLENGE_METHOD == "S256"

    def test_custom_length(self):
        assert len(generate_pkce_pair(length=100).verifier) == 100

    def test_pair_is_frozen(self):
        pair = PKCEPair(verifier="v", challenge="c")
        with pytest.raises(AttributeError):
            pair.verifier = "other"  # type: ignore[misc]


class TestGenerateState:
    """Tests for state parameter generation."""

    def test_generates_hex_string(self):
        state = generate_state()
        assert len(state) == 32
        assert re.match(r"^[0-9a-f]+$", state)

    def test_randomness(self):
        states = [generate_state() for _ in range(10)]
        assert len(set(states)) == 10
