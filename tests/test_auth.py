"""
Tests — Authentication: registration, login, token refresh, logout and the
JWT middleware.
"""

from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest

from oris.core.exceptions import AuthenticationError, ConflictError, ValidationError
from oris.models import db
from oris.services import user_service
from oris.services.jwt_service import (
    decode_access_token,
    generate_access_token,
    generate_token_pair,
    hash_token,
)
from oris.utils.crypto import hash_password, verify_password


class TestCrypto:

    def test_hash_and_verify(self):
        hashed = hash_password("secret123")
        assert hashed.startswith("$2b$")
        assert verify_password("secret123", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_is_mismatch(self):
        assert verify_password("secret123", "not-a-bcrypt-hash") is False
        assert verify_password("secret123", "") is False


class TestJWT:

    def test_access_token_round_trip(self):
        payload = decode_access_token(generate_access_token(42, "admin"))
        assert payload["sub"] == 42
        assert payload["role"] == "admin"

    def test_refresh_token_rejected_as_access(self):
        pair = generate_token_pair(1, "user")
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(pair["refresh_token"])
        assert pair["token_hash"] == hash_token(pair["refresh_token"])

    def test_expired_token(self, app):
        token = pyjwt.encode(
            {
                "sub": "1", "role": "user", "type": "access",
                "exp": datetime.now(timezone.utc) - timedelta(seconds=5),
            },
            app.config["JWT_SECRET_KEY"], algorithm="HS256",
        )
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_access_token(token)


class TestRegisterAndLogin:

    def test_register_normalises_email_and_issues_tokens(self):
        user, tokens = user_service.register_user(
            {"name": "Davi Rocha", "email": "Davi@Example.com", "password": "secret123"}
        )
        assert user.email == "davi@example.com"
        assert user.role == "user"
        assert user.refresh_token_hash == hash_token(tokens["refresh_token"])

    def test_register_ignores_requested_role(self):
        user, _ = user_service.register_user(
            {"name": "Davi Rocha", "email": "davi@example.com", "password": "secret123", "role": "admin"}
        )
        assert user.role == "user"

    def test_register_duplicate_email(self, user):
        with pytest.raises(ConflictError):
            user_service.register_user({"name": "Ana Two", "email": "ANA@example.com", "password": "secret123"})

    @pytest.mark.parametrize("data,field", [
        ({"name": "", "email": "x@example.com", "password": "secret123"}, "name"),
        ({"name": "Xavier", "email": "x@example.com", "password": "123"}, "password"),
        ({"name": "Xavier", "email": "not-an-email", "password": "secret123"}, "email"),
    ])
    def test_register_validation(self, data, field):
        with pytest.raises(ValidationError) as exc:
            user_service.register_user(data)
        assert field in exc.value.details

    def test_authenticate(self, user):
        logged_in, tokens = user_service.authenticate("ana@example.com", "secret123")
        assert logged_in.id == user.id
        assert logged_in.last_login is not None
        assert decode_access_token(tokens["access_token"])["sub"] == user.id

    def test_authenticate_wrong_password(self, user):
        with pytest.raises(AuthenticationError):
            user_service.authenticate("ana@example.com", "wrong-password")

    def test_authenticate_missing_fields(self):
        with pytest.raises(ValidationError):
            user_service.authenticate("", None)


class TestRefresh:

    def test_rotation_invalidates_previous_token(self, user):
        _, tokens = user_service.authenticate("ana@example.com", "secret123")
        rotated = user_service.refresh_tokens(tokens["refresh_token"])
        assert rotated["refresh_token"] != tokens["refresh_token"]

        with pytest.raises(AuthenticationError):
            user_service.refresh_tokens(tokens["refresh_token"])

    def test_logout_revokes_refresh(self, user):
        _, tokens = user_service.authenticate("ana@example.com", "secret123")
        user_service.logout(user.id)
        with pytest.raises(AuthenticationError):
            user_service.refresh_tokens(tokens["refresh_token"])

    def test_garbage_token(self):
        with pytest.raises(AuthenticationError):
            user_service.refresh_tokens("garbage")


class TestAuthAPI:

    def test_register_endpoint(self, client):
        res = client.post("/api/v1/auth/register", json={
            "name": "Elisa Prado", "email": "elisa@example.com", "password": "secret123",
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["user"]["email"] == "elisa@example.com"
        assert body["token_type"] == "Bearer"
        assert "password_hash" not in body["user"]

    def test_register_duplicate_is_409(self, client, user):
        res = client.post("/api/v1/auth/register", json={
            "name": "Ana Again", "email": "ana@example.com", "password": "secret123",
        })
        assert res.status_code == 409

    def test_login_and_me(self, client, user):
        res = client.post("/api/v1/auth/login", json={"email": "ana@example.com", "password": "secret123"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["role"] == "user"

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.get_json()["email"] == "ana@example.com"

    def test_login_bad_credentials(self, client, user):
        res = client.post("/api/v1/auth/login", json={"email": "ana@example.com", "password": "nope-nope"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid credentials"

    def test_refresh_endpoint_accepts_camel_case(self, client, user):
        tokens = client.post(
            "/api/v1/auth/login", json={"email": "ana@example.com", "password": "secret123"},
        ).get_json()
        res = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refresh_token"]})
        assert res.status_code == 200
        assert "access_token" in res.get_json()

    def test_logout(self, client, auth_headers, user):
        res = client.post("/api/v1/auth/logout", headers=auth_headers)
        assert res.status_code == 200
        db.session.refresh(user)
        assert user.refresh_token_hash is None


class TestMiddleware:

    def test_missing_header(self, client):
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401
        assert res.get_json()["error"] == "Please authenticate."

    def test_invalid_token(self, client):
        res = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    def test_deleted_user_token(self, client, make_user, bearer):
        ghost = make_user(name="Ghost User", email="ghost@example.com")
        headers = bearer(ghost)
        db.session.delete(ghost)
        db.session.commit()
        res = client.get("/api/v1/auth/me", headers=headers)
        assert res.status_code == 401

    def test_stored_role_wins_over_token_role(self, client, user):
        headers = {"Authorization": f"Bearer {generate_access_token(user.id, 'admin')}"}
        res = client.get("/api/v1/admin/users", headers=headers)
        assert res.status_code == 403

    def test_response_carries_timing_headers(self, client):
        res = client.get("/api/v1/health")
        assert "X-Request-Duration-Ms" in res.headers
        assert "X-Request-ID" in res.headers
