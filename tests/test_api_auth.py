"""Tests for API authentication"""

import pytest
from datetime import datetime, timedelta
from jose import jwt

from concern_review.api.auth import Authenticator, AuthResult


class TestAuthenticator:
    """Test Authenticator class"""

    def test_initialization(self):
        """Test authenticator initializes correctly"""
        auth = Authenticator(
            secret_key="test-secret",
            algorithm="HS256",
            access_token_expire_minutes=30
        )

        assert auth.secret_key == "test-secret"
        assert auth.algorithm == "HS256"
        assert auth.access_token_expire_minutes == 30

    def test_defaults_from_settings(self):
        from concern_review.config import settings
        auth = Authenticator()

        assert auth.secret_key == settings.security.jwt_secret
        assert auth.access_token_expire_minutes == settings.security.jwt_expiry_minutes

    def test_generate_token_carries_identity_only(self):
        """Test tokens name the reviewer but never a role"""
        auth = Authenticator(secret_key="test-secret")

        token = auth.generate_token("ssc-01")

        payload = jwt.decode(token, "test-secret", algorithms=["HS256"])
        assert payload["sub"] == "ssc-01"
        assert "role" not in payload
        assert "exp" in payload
        assert "iat" in payload

    def test_generate_token_custom_expiry(self):
        auth = Authenticator(secret_key="test-secret")

        token = auth.generate_token("usc-01", expiry_minutes=120)

        payload = jwt.decode(token, "test-secret", algorithms=["HS256"])
        assert payload["exp"] - payload["iat"] == 120 * 60

    def test_verify_token_valid(self):
        auth = Authenticator(secret_key="test-secret")

        result = auth.verify_token(auth.generate_token("faculty-01"))

        assert result == AuthResult(authenticated=True, user_id="faculty-01")

    def test_verify_token_expired(self):
        """Test verifying expired token"""
        auth = Authenticator(secret_key="test-secret")
        payload = {
            "sub": "ssc-01",
            "exp": datetime.utcnow() - timedelta(minutes=10),
            "iat": datetime.utcnow() - timedelta(minutes=20)
        }
        token = jwt.encode(payload, "test-secret", algorithm="HS256")

        result = auth.verify_token(token)

        assert result.authenticated is False
        assert result.error == "Token has expired"

    def test_verify_token_wrong_secret(self):
        token = Authenticator(secret_key="other-secret").generate_token("ssc-01")

        result = Authenticator(secret_key="test-secret").verify_token(token)

        assert result.authenticated is False
        assert result.error.startswith("Invalid token")

    def test_verify_token_without_subject(self):
        token = jwt.encode(
            {"exp": datetime.utcnow() + timedelta(minutes=5)}, "test-secret", algorithm="HS256"
        )

        result = Authenticator(secret_key="test-secret").verify_token(token)

        assert result.authenticated is False
        assert result.error == "Invalid token payload"

    def test_verify_malformed_token(self):
        result = Authenticator(secret_key="test-secret").verify_token("not-a-jwt")
        assert result.authenticated is False

    def test_verification_is_stateless(self):
        """Test verifying many tokens leaves nothing behind on the authenticator"""
        auth = Authenticator(secret_key="test-secret")
        before = dict(vars(auth))

        for i in range(200):
            assert auth.verify_token(auth.generate_token(f"ssc-{i:03d}")).authenticated is True

        assert vars(auth) == before

    def test_verified_twice(self):
        auth = Authenticator(secret_key="test-secret")
        token = auth.generate_token("usc-01")

        assert auth.verify_token(token) == auth.verify_token(token)
