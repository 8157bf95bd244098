"""Security utilities for share-link passwords and JWTs.

WHAT:
    Centralizes password hashing for launch share links and JWT helpers
    used to identify the calling account.

WHY:
    - Share passwords are only ever stored as salted bcrypt hashes.
    - Session issuance lives in the auth service; this service only needs to
      verify tokens (and mint them in tests and scripts).
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt, JWTError
from passlib.hash import bcrypt


ALGORITHM = "HS256"

logger = logging.getLogger(__name__)


def get_password_hash(password: str) -> str:
    """Hash a plaintext password using bcrypt (salt embedded in the hash)."""
    return bcrypt.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a plaintext password against a bcrypt hash."""
    try:
        return bcrypt.verify(password, password_hash)
    except ValueError:
        logger.warning("[SECURITY] Stored share password hash is malformed")
        return False


def generate_share_token() -> str:
    """Opaque URL-safe token for public launch recap links."""
    return secrets.token_urlsafe(24)


def create_access_token(subject: str, secret: str, expires_minutes: int = 60) -> str:
    """Create a signed JWT for the given subject (account id)."""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes)
    to_encode: Dict[str, Any] = {"sub": subject, "iat": int(now.timestamp()), "exp": int(expire.timestamp())}
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    """Decode and validate a JWT, returning its payload.

    Raises jose.JWTError on failure.
    """
    if not secret:
        raise JWTError("JWT secret is not configured")
    return jwt.decode(token, secret, algorithms=[ALGORITHM])
