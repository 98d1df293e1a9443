"""
Magic Link Tests
================
Signing, verification and link building for magic-link tokens.
"""

from datetime import datetime, timedelta, timezone

import pytest

SECRET = "test-magic-link-secret-0123456789abcdef"


@pytest.fixture
def tokens():
    from authgate_core.otp import MagicLinkToken

    return MagicLinkToken(SECRET, validity_minutes=15, base_url="https://app.example.com")


class TestMagicLinkToken:
    """Tests for token generation and verification."""

    def test_round_trip_claims(self, tokens, email):
        from authgate_core.otp import ChallengeIntent

        token = tokens.generate(email, "login", "challenge-1", jti="nonce-1")
        payload = tokens.verify(token)

        assert payload.identifier == "alice@example.com"
        assert payload.identifier_type == "email"
        assert payload.intent == ChallengeIntent.LOGIN
        assert payload.challenge_id == "challenge-1"
        assert payload.jti == "nonce-1"
        assert payload.exp - payload.iat == 15 * 60

    def test_random_jti_when_omitted(self, tokens, email):
        first = tokens.verify(tokens.generate(email, "login", "c1"))
        second = tokens.verify(tokens.generate(email, "login", "c1"))

        assert first.jti != second.jti

    def test_wrong_secret_rejected(self, tokens, email):
        """Tokens signed with another secret must not verify."""
        from authgate_core.errors import ValidationError
        from authgate_core.otp import MagicLinkToken

        other = MagicLinkToken("some-other-secret-0123456789abcdef")
        token = other.generate(email, "login", "c1")

        with pytest.raises(ValidationError):
            tokens.verify(token)

    def test_wrong_audience_rejected(self, tokens, email):
        from authgate_core.errors import ValidationError
        from authgate_core.otp import MagicLinkToken

        other = MagicLinkToken(SECRET, audience="someone-else")
        token = other.generate(email, "login", "c1")

        with pytest.raises(ValidationError):
            tokens.verify(token)

    def test_expired_token(self, tokens, email):
        """Expired links raise ChallengeExpired rather than a generic error."""
        from authgate_core.errors import ChallengeExpired

        issued = datetime.now(timezone.utc) - timedelta(minutes=20)
        token = tokens.generate(email, "login", "c1", now=issued)

        with pytest.raises(ChallengeExpired):
            tokens.verify(token)

    def test_garbage_rejected(self, tokens):
        from authgate_core.errors import ValidationError

        with pytest.raises(ValidationError):
            tokens.verify("not.a.jwt")

    def test_empty_secret_rejected(self):
        from authgate_core.otp import MagicLinkToken

        with pytest.raises(ValueError):
            MagicLinkToken("")

    def test_decode_without_verification(self, tokens, email):
        from authgate_core.otp import MagicLinkToken

        issued = datetime.now(timezone.utc) - timedelta(minutes=20)
        token = tokens.generate(email, "bind", "c9", now=issued)

        payload = MagicLinkToken.decode(token)

        assert payload is not None
        assert payload.challenge_id == "c9"
        assert MagicLinkToken.decode("garbage") is None

    def test_expiry_helpers(self, tokens, email, t0):
        from authgate_core.otp import MagicLinkToken

        payload = MagicLinkToken.decode(tokens.generate(email, "login", "c1", now=t0))

        assert MagicLinkToken.time_to_expire(payload, now=t0 + timedelta(minutes=5)) == 600
        assert not MagicLinkToken.is_expired(payload, now=t0 + timedelta(minutes=14))
        assert MagicLinkToken.is_expired(payload, now=t0 + timedelta(minutes=15))
        assert MagicLinkToken.time_to_expire(payload, now=t0 + timedelta(hours=1)) == 0


class TestMagicLinkUrls:
    """Tests for link building and token extraction."""

    def test_generate_link(self, tokens, email):
        from authgate_core.otp import MagicLinkToken

        link = tokens.generate_link(email, "login", "c1")

        assert link.startswith("https://app.example.com/auth/verify?token=")
        assert link.endswith("&intent=login")

        token = MagicLinkToken.extract_token_from_url(link)
        assert tokens.verify(token).challenge_id == "c1"

    def test_base_url_override(self, tokens, email):
        link = tokens.generate_link(email, "verifyContact", "c1", base_url="https://other.example.org/")

        assert link.startswith("https://other.example.org/auth/verify?token=")
        assert "intent=verifyContact" in link

    def test_base_url_required(self, email):
        from authgate_core.otp import MagicLinkToken

        with pytest.raises(ValueError):
            MagicLinkToken(SECRET).generate_link(email, "login", "c1")

    def test_extract_missing_token(self):
        from authgate_core.otp import MagicLinkToken

        assert MagicLinkToken.extract_token_from_url("https://app.example.com/auth/verify") is None
