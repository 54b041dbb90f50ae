"""Tests for password hashing, session tokens and account helpers."""

import base64
import json
from types import SimpleNamespace

import pytest

from backend import auth, config
from backend.core.errors import ConflictError


def _request(path="/", headers=None, cookies=None):
    return SimpleNamespace(
        url=SimpleNamespace(path=path),
        headers=headers or {},
        cookies=cookies or {},
        state=SimpleNamespace(),
    )


class TestPasswords:
    def test_round_trip(self):
        stored = auth.hash_password("s3cret")
        assert stored.startswith("pbkdf2_sha256$1000$")
        assert auth.verify_password("s3cret", stored)
        assert not auth.verify_password("wrong", stored)

    def test_salt_makes_hashes_unique(self):
        assert auth.hash_password("same") != auth.hash_password("same")

    @pytest.mark.parametrize("stored", ["", "plain-text", "md5$1$salt$abc"])
    def test_malformed_hashes_never_verify(self, stored):
        assert auth.verify_password("anything", stored) is False


class TestTokens:
    def test_round_trip(self):
        token = auth.create_token("u1", "a@example.com", "Ann")
        payload = auth.decode_token(token)
        assert payload["sub"] == "u1"
        assert payload["email"] == "a@example.com"

        user = auth.user_from_token(token)
        assert (user.user_id, user.email, user.name) == ("u1", "a@example.com", "Ann")

    def test_tampered_payload_rejected(self):
        token = auth.create_token("u1", "a@example.com")
        _, sig = token.split(".")
        forged = base64.urlsafe_b64encode(json.dumps({"sub": "admin", "exp": 9e12}).encode()).decode()
        assert auth.decode_token(f"{forged}.{sig}") is None

    def test_other_secret_rejected(self, monkeypatch):
        token = auth.create_token("u1", "a@example.com")
        monkeypatch.setattr(config, "AUTH_SECRET", "rotated")
        assert auth.decode_token(token) is None

    def test_expired(self, monkeypatch):
        monkeypatch.setattr(config, "SESSION_EXPIRY_SECONDS", -60)
        assert auth.decode_token(auth.create_token("u1", "a@example.com")) is None

    @pytest.mark.parametrize("token", ["", "no-dot", "abc.def"])
    def test_garbage(self, token):
        assert auth.user_from_token(token) is None


class TestRequestResolution:
    def test_bearer_header_wins(self):
        token = auth.create_token("u1", "a@example.com")
        other = auth.create_token("u2", "b@example.com")
        request = _request(headers={"authorization": f"Bearer {token}"}, cookies={auth.COOKIE_NAME: other})
        assert auth.get_current_user(request).user_id == "u1"

    def test_cookie_fallback(self):
        token = auth.create_token("u2", "b@example.com")
        request = _request(headers={"authorization": "Bearer junk"}, cookies={auth.COOKIE_NAME: token})
        assert auth.get_current_user(request).user_id == "u2"

    def test_anonymous(self):
        assert auth.get_current_user(_request()) is None

    @pytest.mark.parametrize("path,needed", [
        ("/api/proposals", True),
        ("/api/teams/abc/members", True),
        ("/api/auth/login", False),
        ("/api/health", False),
        ("/api/proposals/public/abc123", False),
        ("/api/heatmaps/track/interaction", False),
        ("/api/payments/webhook", False),
        ("/ws/events", False),
        ("/", False),
    ])
    def test_requires_auth(self, path, needed):
        assert auth.requires_auth(_request(path)) is needed


class TestAccounts:
    def test_register_and_authenticate(self, session_factory):
        user = auth.register_user("  Ann@Example.COM ", "pw-123", "Ann", "Acme")
        assert user.email == "ann@example.com"
        assert user.company_name == "Acme"

        assert auth.authenticate("ANN@example.com", "pw-123").id == user.id
        assert auth.authenticate("ann@example.com", "nope") is None
        assert auth.authenticate("ghost@example.com", "pw-123") is None

    def test_duplicate_email(self, session_factory):
        auth.register_user("ann@example.com", "pw")
        with pytest.raises(ConflictError):
            auth.register_user("ANN@example.com", "pw")
