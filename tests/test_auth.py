"""Tests for atelier/core/auth.py (dev bypass and shared-secret tokens)."""

from types import SimpleNamespace

import pytest
from jose import jwt

from atelier.core import auth
from atelier.core.auth import DEV_USER, AuthError, bearer_token, get_current_user, user_from_claims

SECRET = "s" * 40


@pytest.fixture
def secret_auth(monkeypatch):
    monkeypatch.setattr(auth, "get_flags", lambda: SimpleNamespace(use_auth0=True))
    monkeypatch.setattr(auth, "get_settings", lambda: SimpleNamespace(
        auth0_domain="", jwt_secret=SECRET, jwt_algorithm="HS256",
    ))


def token(claims: dict, secret: str = SECRET) -> str:
    return "Bearer " + jwt.encode(claims, secret, algorithm="HS256")


# ========== Dev mode ==========

class TestDevMode:
    @pytest.mark.asyncio
    async def test_auth_off_returns_dev_user(self, monkeypatch):
        monkeypatch.setattr(auth, "get_flags", lambda: SimpleNamespace(use_auth0=False))
        assert await get_current_user("") is DEV_USER


# ========== Tokens ==========

class TestTokens:
    @pytest.mark.asyncio
    async def test_valid_token(self, secret_auth):
        user = await get_current_user(token({"sub": "u-42", "email": "ana@brand.example", "role": "editor"}))
        assert (user.user_id, user.email, user.role) == ("u-42", "ana@brand.example", "editor")

    @pytest.mark.asyncio
    async def test_wrong_secret(self, secret_auth):
        with pytest.raises(AuthError, match="Invalid token"):
            await get_current_user(token({"sub": "u-42"}, secret="x" * 40))

    @pytest.mark.asyncio
    async def test_missing_header(self, secret_auth):
        with pytest.raises(AuthError):
            await get_current_user("")

    @pytest.mark.asyncio
    async def test_nothing_configured(self, monkeypatch):
        monkeypatch.setattr(auth, "get_flags", lambda: SimpleNamespace(use_auth0=True))
        monkeypatch.setattr(auth, "get_settings", lambda: SimpleNamespace(auth0_domain="", jwt_secret=""))
        with pytest.raises(AuthError, match="JWT_SECRET"):
            await get_current_user("Bearer abc.def.ghi")

    def test_bearer_scheme_required(self):
        assert bearer_token("bearer  tok ") == "tok"
        with pytest.raises(AuthError):
            bearer_token("Basic dXNlcg==")

    def test_namespaced_claims(self):
        user = user_from_claims({"sub": "auth0|1", "https://atelier.app/name": "Ana"})
        assert user.name == "Ana"
        assert user.role == "member"

    def test_subject_required(self):
        with pytest.raises(AuthError):
            user_from_claims({"email": "x@y"})
