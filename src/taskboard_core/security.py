"""Password hashing and signed token primitives."""
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID

import bcrypt
import jwt

from .config import get_settings
from .errors import InvalidToken

ACCESS_PURPOSE = "access"
RESET_PURPOSE = "password_reset"

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Return a salted bcrypt hash of the password."""
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def password_fingerprint(password_hash: str) -> str:
    """Short digest of the stored hash; changes whenever the password does."""
    return hashlib.sha256(password_hash.encode("utf-8")).hexdigest()[:16]


def create_token(
    user_id: UUID,
    purpose: str = ACCESS_PURPOSE,
    ttl: Optional[timedelta] = None,
    extra_claims: Optional[dict[str, Any]] = None,
) -> str:
    """
    Create a signed, time-limited token bound to a user id.

    Args:
        user_id: Subject of the token
        purpose: Token purpose claim; session and reset tokens are not interchangeable
        ttl: Lifetime (defaults to the configured session lifetime)
        extra_claims: Additional claims to embed

    Returns:
        Encoded JWT string
    """
    settings = get_settings()
    if ttl is None:
        ttl = timedelta(minutes=settings.access_token_ttl_minutes)
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "purpose": purpose,
        "iat": now,
        "exp": now + ttl,
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, purpose: str = ACCESS_PURPOSE) -> dict[str, Any]:
    """
    Verify a token's signature, expiry and purpose.

    Returns:
        The decoded claims

    Raises:
        InvalidToken: If the token is malformed, expired, forged or issued for another purpose
    """
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as e:
        raise InvalidToken() from e

    if claims.get("purpose") != purpose:
        raise InvalidToken()

    try:
        claims["sub"] = UUID(claims["sub"])
    except (TypeError, ValueError) as e:
        raise InvalidToken() from e
    return claims
