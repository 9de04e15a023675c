"""
Unit tests for JWT verification helpers.

Uses HS256 with a shared secret so no key material is needed.
"""

import time

import jwt
import pytest

from saas_backend.core.security import (
    JWTTokenVerifier,
    TokenVerificationError,
    extract_bearer_token,
)

SECRET = "test-secret-key-with-enough-length-for-hs256"


def make_token(claims: dict, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def verifier() -> JWTTokenVerifier:
    return JWTTokenVerifier(SECRET, algorithms=["HS256"])


class TestJWTTokenVerifier:
    def test_valid_token_returns_claims(self, verifier):
        token = make_token({"sub": "user-1", "tenant_id": "abc", "exp": int(time.time()) + 60})

        claims = verifier.verify(token)

        assert claims["sub"] == "user-1"
        assert claims["tenant_id"] == "abc"

    def test_expired_token_rejected(self, verifier):
        token = make_token({"sub": "user-1", "exp": int(time.time()) - 10})

        with pytest.raises(TokenVerificationError):
            verifier.verify(token)

    def test_token_without_exp_rejected(self, verifier):
        with pytest.raises(TokenVerificationError):
            verifier.verify(make_token({"sub": "user-1"}))

    def test_wrong_signature_rejected(self, verifier):
        token = make_token(
            {"sub": "user-1", "exp": int(time.time()) + 60},
            secret="another-secret-key-with-enough-length-x",
        )

        with pytest.raises(TokenVerificationError):
            verifier.verify(token)

    def test_audience_checked_when_configured(self):
        verifier = JWTTokenVerifier(SECRET, algorithms=["HS256"], audience="saas-api")
        good = make_token({"sub": "u", "aud": "saas-api", "exp": int(time.time()) + 60})
        bad = make_token({"sub": "u", "aud": "other", "exp": int(time.time()) + 60})

        assert verifier.verify(good)["aud"] == "saas-api"
        with pytest.raises(TokenVerificationError):
            verifier.verify(bad)


class TestExtractBearerToken:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer token", "token"),
            ("Basic abc", None),
            ("Bearer", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer_token(header) == expected
