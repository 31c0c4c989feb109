"""Tests for the session gate (app/services/auth.py).

Tests password hashing, signed session tokens, and idle expiry:
- Password hashing with Argon2id
- Token creation/validation/expiration
- Session store idle timeout and revocation
- Password source resolution (hash, plain, generated)
"""

from datetime import UTC, datetime, timedelta

import pytest
from authlib.jose import jwt

from app.services.auth import (
    JWT_ALGORITHM,
    SessionGate,
    SessionStore,
    hash_password,
    verify_password,
)

ADMIN_PASSWORD = "AdminPassword123!"


class TestPasswordHashing:
    """Test suite for Argon2id password hashing."""

    def test_hash_password_creates_valid_hash(self):
        """Test hash_password() creates Argon2 hash."""
        hashed = hash_password("SecurePassword123!")

        # Argon2 hashes start with $argon2id$
        assert hashed.startswith("$argon2id$")

    def test_hash_password_different_each_time(self):
        """Test hashing same password produces different hashes (salt)."""
        assert hash_password("TestPassword123") != hash_password("TestPassword123")

    def test_verify_password(self):
        hashed = hash_password("MySecretPassword123!")

        assert verify_password("MySecretPassword123!", hashed) is True
        assert verify_password("mysecretpassword123!", hashed) is False

    def test_verify_password_invalid_hash(self):
        """Test verify_password() handles a corrupt hash without raising."""
        assert verify_password("anything", "not-a-hash") is False


class TestSessionStore:
    """Test suite for in-memory sessions with idle expiry."""

    def test_create_and_touch(self, clock):
        store = SessionStore(timeout_seconds=60, clock=clock)

        sid = store.create("admin")
        entry = store.touch(sid)

        assert entry is not None
        assert entry.username == "admin"
        assert len(store) == 1

    def test_idle_session_expires(self, clock):
        store = SessionStore(timeout_seconds=60, clock=clock)
        sid = store.create("admin")

        clock.advance(61)

        assert store.touch(sid) is None
        assert len(store) == 0

    def test_activity_refreshes_idle_clock(self, clock):
        store = SessionStore(timeout_seconds=60, clock=clock)
        sid = store.create("admin")

        for _ in range(5):
            clock.advance(45)
            assert store.touch(sid) is not None

    def test_revoke(self, clock):
        store = SessionStore(timeout_seconds=60, clock=clock)
        sid = store.create("admin")

        assert store.revoke(sid) is True
        assert store.revoke(sid) is False
        assert store.touch(sid) is None

    def test_expired_entries_purged_on_create(self, clock):
        store = SessionStore(timeout_seconds=60, clock=clock)
        store.create("admin")
        clock.advance(120)

        store.create("admin")

        assert len(store) == 1


class TestSessionGate:
    """Test suite for login, token validation and logout."""

    @pytest.fixture
    def gate(self, auth_settings):
        return SessionGate(auth_settings)

    def test_authenticate_success(self, gate):
        token = gate.authenticate("admin", ADMIN_PASSWORD)

        assert token is not None
        session = gate.validate(token)
        assert session["username"] == "admin"

    def test_authenticate_wrong_password(self, gate):
        assert gate.authenticate("admin", "wrong") is None
        assert len(gate.sessions) == 0

    def test_authenticate_wrong_username(self, gate):
        assert gate.authenticate("root", ADMIN_PASSWORD) is None

    def test_token_claims(self, gate):
        token = gate.authenticate("admin", ADMIN_PASSWORD)

        payload = gate.decode_token(token)

        assert payload["sub"] == "admin"
        assert payload["sid"]
        assert payload["exp"] > payload["iat"]

    def test_tampered_token_rejected(self, gate):
        token = gate.authenticate("admin", ADMIN_PASSWORD)

        assert gate.validate(token[:-4] + "AAAA") is None
        assert gate.validate("not.a.token") is None
        assert gate.validate("") is None
        assert gate.validate(None) is None

    def test_token_signed_with_other_secret_rejected(self, gate):
        sid = gate.sessions.create("admin")
        forged = jwt.encode(
            {"alg": JWT_ALGORITHM}, {"sub": "admin", "sid": sid}, "other-secret"
        ).decode("utf-8")

        assert gate.validate(forged) is None

    def test_expired_token_rejected(self, gate):
        sid = gate.sessions.create("admin")
        past = datetime.now(UTC) - timedelta(hours=2)
        expired = jwt.encode(
            {"alg": JWT_ALGORITHM},
            {
                "sub": "admin",
                "sid": sid,
                "iat": int(past.timestamp()),
                "exp": int((past + timedelta(minutes=30)).timestamp()),
            },
            "test-secret",
        ).decode("utf-8")

        assert gate.validate(expired) is None

    def test_idle_session_invalidates_token(self, auth_settings, clock):
        gate = SessionGate(auth_settings)
        gate.sessions.clock = clock
        token = gate.authenticate("admin", ADMIN_PASSWORD)

        clock.advance(auth_settings.session_timeout_seconds + 1)

        assert gate.validate(token) is None

    def test_logout_revokes_session(self, gate):
        token = gate.authenticate("admin", ADMIN_PASSWORD)

        assert gate.logout(token) is True
        assert gate.validate(token) is None
        assert gate.logout(token) is False

    def test_logout_without_token(self, gate):
        assert gate.logout(None) is False

    def test_configured_hash_used(self, auth_settings):
        settings = auth_settings.model_copy(
            update={"auth_password": None, "auth_password_hash": hash_password("FromHash1!")}
        )
        gate = SessionGate(settings)

        assert gate.authenticate("admin", "FromHash1!") is not None
        assert gate.authenticate("admin", ADMIN_PASSWORD) is None

    def test_generated_password_logged(self, auth_settings, caplog):
        settings = auth_settings.model_copy(update={"auth_password": None})

        with caplog.at_level("WARNING"):
            gate = SessionGate(settings)

        message = caplog.records[-1].getMessage()
        assert "Generated password" in message
        generated = message.rsplit(": ", 1)[1]
        assert gate.authenticate("admin", generated) is not None

    def test_disabled_gate_skips_hashing(self, settings):
        gate = SessionGate(settings)

        assert gate.enabled is False
        assert gate.authenticate("admin", "") is None
