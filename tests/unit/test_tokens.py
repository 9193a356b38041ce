"""Unit tests for session token signing and verification"""

from datetime import timedelta

import pytest
from jose import jwt

from storefront.auth.tokens import TokenFailure, TokenService
from tests.utils.helpers import build_settings

TTL = timedelta(days=30)


@pytest.fixture
def tokens(test_settings, clock):
    return TokenService(test_settings, clock=clock)


class TestSignAndVerify:
    @pytest.mark.parametrize("user_id", ["u-1", "0b9d1e7c-3a55-4c51-8f0e-2d0f2d6f4a11", "ünïcode"])
    def test_roundtrip_returns_subject(self, tokens, user_id):
        result = tokens.verify(tokens.sign(user_id, TTL))

        assert result.ok
        assert result.failure is None
        assert result.claims.user_id == user_id

    def test_claims_carry_issue_and_expiry(self, tokens, clock):
        result = tokens.verify(tokens.sign("u-1", TTL))

        issued = result.claims.issued_at.timestamp()
        assert issued == int(clock.now)
        assert result.claims.expires_at.timestamp() == issued + TTL.total_seconds()
        assert result.claims.token_id

    def test_same_second_tokens_are_distinct(self, tokens):
        assert tokens.sign("u-1", TTL) != tokens.sign("u-1", TTL)

    def test_empty_user_id_rejected(self, tokens):
        with pytest.raises(ValueError):
            tokens.sign("", TTL)


class TestExpiry:
    def test_valid_until_the_last_second(self, tokens, clock):
        token = tokens.sign("u-1", TTL)
        clock.advance(TTL.total_seconds() - 1)

        assert tokens.verify(token).ok

    def test_expired_exactly_at_exp(self, tokens, clock):
        token = tokens.sign("u-1", TTL)
        clock.advance(TTL.total_seconds())

        result = tokens.verify(token)
        assert not result.ok
        assert result.failure is TokenFailure.EXPIRED

    def test_expired_long_after(self, tokens, clock):
        token = tokens.sign("u-1", timedelta(seconds=5))
        clock.advance(3600)

        assert tokens.verify(token).failure is TokenFailure.EXPIRED


class TestRejection:
    @pytest.mark.parametrize("token", [None, "", "not-a-token", "a.b.c", "...", 12345])
    def test_malformed_input_never_raises(self, tokens, token):
        result = tokens.verify(token)

        assert not result.ok
        assert result.failure is TokenFailure.MALFORMED

    def test_foreign_secret_is_signature_invalid(self, tokens, db_path, clock):
        other = TokenService(build_settings(db_path), clock=clock)
        result = tokens.verify(other.sign("u-1", TTL))

        assert result.failure is TokenFailure.SIGNATURE_INVALID

    def test_tampered_payload_is_signature_invalid(self, tokens, test_settings, clock):
        token = tokens.sign("u-1", TTL)
        forged = jwt.encode(
            {"sub": "admin", "iat": int(clock.now), "exp": int(clock.now) + 60},
            "another-secret-that-is-long-enough-to-sign-with",
            algorithm="HS256",
        )
        header, _, signature = token.split(".")
        _, payload, _ = forged.split(".")

        result = tokens.verify(f"{header}.{payload}.{signature}")
        assert result.failure is TokenFailure.SIGNATURE_INVALID

    def test_other_algorithm_is_signature_invalid(self, tokens, test_settings, clock):
        token = jwt.encode(
            {"sub": "u-1", "iat": int(clock.now), "exp": int(clock.now) + 60},
            test_settings.secret_key.get_secret_value(),
            algorithm="HS512",
        )

        assert tokens.verify(token).failure is TokenFailure.SIGNATURE_INVALID

    @pytest.mark.parametrize("claims", [
        {"exp": 1_700_000_600},
        {"sub": "u-1"},
        {"sub": "", "exp": 1_700_000_600},
    ])
    def test_missing_required_claims_is_malformed(self, tokens, test_settings, claims):
        token = jwt.encode(claims, test_settings.secret_key.get_secret_value(), algorithm="HS256")

        assert tokens.verify(token).failure is TokenFailure.MALFORMED

    def test_signature_checked_before_expiry(self, tokens, clock):
        """An expired token with a bad signature reports the signature problem"""
        forged = jwt.encode(
            {"sub": "u-1", "iat": 1, "exp": 2},
            "another-secret-that-is-long-enough-to-sign-with",
            algorithm="HS256",
        )

        assert tokens.verify(forged).failure is TokenFailure.SIGNATURE_INVALID


def test_clock_defaults_to_wall_time(test_settings):
    service = TokenService(test_settings)
    assert service.verify(service.sign("u-1", timedelta(minutes=5))).ok
