"""Session gate: password check and opaque session credentials."""

import logging
import secrets
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from authlib.jose import JoseError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import Settings
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme (optional - allows both cookie and header auth)
security = HTTPBearer(auto_error=False)

JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = 24 * 60  # 24 hours
JWT_COOKIE_NAME = "dockpulse_token"
GENERATED_PASSWORD_LENGTH = 24

# Argon2id password hasher
ph = PasswordHasher(time_cost=2, memory_cost=102400, parallelism=8)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against an Argon2 hash."""
    try:
        ph.verify(hashed_password, plain_password)
        return True
    except (VerificationError, InvalidHashError):
        return False


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


@dataclass
class SessionEntry:
    username: str
    created_at: datetime
    last_seen: float


class SessionStore:
    """In-memory sessions with an idle timeout.

    Each access refreshes the idle clock. An entry idle for longer than
    ``timeout_seconds`` is gone, even if its signed token is still valid.
    """

    def __init__(
        self, timeout_seconds: int, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._entries: Dict[str, SessionEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def create(self, username: str) -> str:
        sid = uuid.uuid4().hex
        with self._lock:
            self._purge_expired()
            self._entries[sid] = SessionEntry(
                username=username,
                created_at=datetime.now(timezone.utc),
                last_seen=self.clock(),
            )
        return sid

    def touch(self, sid: str) -> Optional[SessionEntry]:
        """Return the live entry for ``sid`` and refresh it, or None."""
        with self._lock:
            entry = self._entries.get(sid)
            if entry is None:
                return None
            now = self.clock()
            if now - entry.last_seen > self.timeout_seconds:
                del self._entries[sid]
                return None
            entry.last_seen = now
            return entry

    def revoke(self, sid: str) -> bool:
        with self._lock:
            return self._entries.pop(sid, None) is not None

    def _purge_expired(self) -> None:
        now = self.clock()
        expired = [
            sid for sid, e in self._entries.items() if now - e.last_seen > self.timeout_seconds
        ]
        for sid in expired:
            del self._entries[sid]


class SessionGate:
    """Issues and validates the session credential for the single admin user."""

    def __init__(self, settings: Settings) -> None:
        self.enabled = settings.auth_enabled
        self.username = settings.auth_username
        self._secret = settings.session_secret or secrets.token_urlsafe(32)
        self.sessions = SessionStore(settings.session_timeout_seconds)
        self._password_hash = ""
        if self.enabled:
            self._password_hash = self._resolve_password_hash(settings)

    def _resolve_password_hash(self, settings: Settings) -> str:
        if settings.auth_password_hash:
            return settings.auth_password_hash
        if settings.auth_password:
            return hash_password(settings.auth_password)
        generated = secrets.token_urlsafe(32)[:GENERATED_PASSWORD_LENGTH]
        logger.warning(
            f"No admin password configured. Generated password for "
            f"'{sanitize_log_message(self.username)}': {generated}"
        )
        return hash_password(generated)

    def authenticate(self, username: str, password: str) -> Optional[str]:
        """Check credentials and open a session.

        Returns:
            Signed session token, or None on bad credentials
        """
        if username != self.username or not verify_password(password, self._password_hash):
            logger.warning(f"Failed login attempt for '{sanitize_log_message(username)}'")
            return None
        sid = self.sessions.create(username)
        logger.info(f"User '{sanitize_log_message(username)}' logged in")
        return self.create_token(username, sid)

    def create_token(self, username: str, sid: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": username,
            "sid": sid,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)).timestamp()),
        }
        encoded = jwt.encode({"alg": JWT_ALGORITHM}, payload, self._secret)
        return encoded.decode("utf-8") if isinstance(encoded, bytes) else encoded

    def decode_token(self, token: str) -> Optional[dict]:
        """Decode and verify a token; None when invalid or expired."""
        try:
            claims = jwt.decode(token, self._secret)
            claims.validate()
        except JoseError as e:
            logger.debug(f"Session token rejected: {e}")
            return None
        except ValueError as e:
            logger.debug(f"Malformed session token: {e}")
            return None
        return dict(claims)

    def validate(self, token: Optional[str]) -> Optional[dict]:
        """Resolve a token to its live session, refreshing the idle clock."""
        if not token:
            return None
        payload = self.decode_token(token)
        if payload is None:
            return None
        sid = payload.get("sid")
        if not sid or payload.get("sub") != self.username:
            return None
        entry = self.sessions.touch(sid)
        if entry is None:
            return None
        return {"username": entry.username, "sid": sid}

    def logout(self, token: Optional[str]) -> bool:
        payload = self.decode_token(token) if token else None
        if not payload or not payload.get("sid"):
            return False
        return self.sessions.revoke(payload["sid"])


def get_token_from_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Extract the session token from cookie or Authorization header.

    Priority:
    1. Cookie (primary method)
    2. Authorization header
    """
    token = request.cookies.get(JWT_COOKIE_NAME)
    if token:
        return token
    if credentials:
        return credentials.credentials
    return None


async def require_auth(
    request: Request,
    token: Optional[str] = Depends(get_token_from_request),
) -> Optional[dict]:
    """Require a valid session.

    Returns:
        Session dict if authenticated.
        None if authentication is disabled.

    Raises:
        HTTPException 401: If auth is enabled but the credential is missing,
            invalid, or its session has expired.
    """
    gate: SessionGate = request.app.state.session_gate
    if not gate.enabled:
        return None

    session = gate.validate(token)
    if session is None:
        logger.debug(f"Unauthenticated request - {request.method} {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session
