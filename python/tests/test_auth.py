"""Tests for session authentication.

Tests cover:
- Token verification (signature, expiry, required claims)
- Cookie and Bearer token sources
- Public paths
- Valid tokens for deleted users
"""

from uuid import uuid4

import jwt
import pytest
from sqlalchemy import delete

from chatrelay.auth.verifier import SessionTokenVerifier, mint_session_token
from chatrelay.config import get_settings
from chatrelay.db.models import User
from chatrelay.errors import UnauthorizedError
from tests.helpers import auth_headers, mint_test_token

SECRET = "unit-test-secret-0123456789abcdef"


class TestSessionTokenVerifier:
    """Tests for SessionTokenVerifier."""

    def test_valid_token(self):
        """Claims come back for a correctly signed token."""
        user_id = uuid4()
        token = mint_session_token(SECRET, user_id, username="ada", is_admin=True)

        claims = SessionTokenVerifier(SECRET).verify(token)

        assert claims["sub"] == str(user_id)
        assert claims["username"] == "ada"
        assert claims["is_admin"] is True

    def test_wrong_secret(self):
        token = mint_session_token("other-secret", uuid4(), username="ada")

        with pytest.raises(UnauthorizedError) as exc_info:
            SessionTokenVerifier(SECRET).verify(token)
        assert exc_info.value.message == "Invalid session"

    def test_expired(self):
        """Expiry beyond the clock skew is rejected."""
        token = mint_session_token(SECRET, uuid4(), username="ada", expires_in=-120)

        with pytest.raises(UnauthorizedError) as exc_info:
            SessionTokenVerifier(SECRET).verify(token)
        assert "expired" in exc_info.value.message

    def test_within_clock_skew(self):
        """A token expired less than a minute ago is still accepted."""
        token = mint_session_token(SECRET, uuid4(), username="ada", expires_in=-30)

        assert SessionTokenVerifier(SECRET).verify(token)

    def test_sub_must_be_uuid(self):
        token = jwt.encode({"sub": "not-a-uuid", "exp": 9_999_999_999}, SECRET, "HS256")

        with pytest.raises(UnauthorizedError):
            SessionTokenVerifier(SECRET).verify(token)

    def test_exp_required(self):
        token = jwt.encode({"sub": str(uuid4())}, SECRET, "HS256")

        with pytest.raises(UnauthorizedError):
            SessionTokenVerifier(SECRET).verify(token)

    def test_other_algorithms_rejected(self):
        """Only HS256 is accepted."""
        token = jwt.encode(
            {"sub": str(uuid4()), "exp": 9_999_999_999}, SECRET + "-long-enough", "HS512"
        )

        with pytest.raises(UnauthorizedError):
            SessionTokenVerifier(SECRET + "-long-enough").verify(token)


class TestAuthMiddleware:
    """Tests for the auth middleware and get_current_user."""

    def test_missing_token(self, auth_client):
        response = auth_client.get("/conversations")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_bearer_token(self, auth_client, test_user_id):
        response = auth_client.get("/conversations", headers=auth_headers(test_user_id))

        assert response.status_code == 200

    def test_cookie_token(self, auth_client, test_user_id):
        """The session cookie is read before the header."""
        cookie_name = get_settings().session_cookie_name
        auth_client.cookies.set(cookie_name, mint_test_token(test_user_id))

        response = auth_client.get(
            "/conversations", headers={"Authorization": "Bearer garbage"}
        )

        assert response.status_code == 200

    def test_invalid_token(self, auth_client):
        response = auth_client.get(
            "/conversations", headers={"Authorization": "Bearer not.a.jwt"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid session"

    def test_expired_token(self, auth_client, test_user_id):
        response = auth_client.get(
            "/conversations", headers=auth_headers(test_user_id, expires_in=-3600)
        )

        assert response.status_code == 401

    def test_deleted_user(self, auth_client, db_session, test_user_id):
        """A valid token whose user row is gone is a 401."""
        headers = auth_headers(test_user_id)
        db_session.execute(delete(User).where(User.id == test_user_id))
        db_session.commit()

        response = auth_client.get("/conversations", headers=headers)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_public_health(self, auth_client):
        """/health needs no session."""
        response = auth_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"data": {"status": "ok"}}
