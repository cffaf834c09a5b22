# auth/security.py
"""
Security primitives: password hashing, JWT access tokens and opaque
refresh/reset tokens.
"""

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional
from jose import ExpiredSignatureError, JWTError, jwt
import bcrypt

from config import (
    SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ISSUER, JWT_AUDIENCE
)
from utils.exceptions import TokenExpired, TokenInvalid
from utils.timezone import now_utc


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Checks a plain password against its bcrypt hash"""
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Malformed hash stored
        return False


def get_password_hash(password: str) -> str:
    """bcrypt hash of a password"""
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
    issued_at: Optional[datetime] = None,
) -> tuple:
    """
    Builds a signed JWT access token.

    Args:
        data: claims (must include "sub" = user id)
        expires_delta: custom lifetime
        issued_at: custom issue time (tests)

    Returns:
        (token, jti, expires_at)
    """
    to_encode = data.copy()
    issued = issued_at or now_utc()
    expire = issued + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    jti = to_encode.get("jti") or uuid.uuid4().hex

    to_encode.update({
        "sub": str(to_encode["sub"]),
        "jti": jti,
        "iat": int(issued.timestamp()),
        "exp": int(expire.timestamp()),
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
    })
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    return encoded_jwt, jti, expire


def decode_access_token(token: str) -> dict:
    """
    Strict decoding used by protected routes.

    Raises:
        TokenExpired: signature valid but `exp` in the past
        TokenInvalid: any other problem (signature, audience, issuer, claims)
    """
    try:
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
    except ExpiredSignatureError:
        raise TokenExpired()
    except JWTError:
        raise TokenInvalid()

    if not payload.get("sub") or not payload.get("jti"):
        raise TokenInvalid("Token is missing required claims")

    return payload


def decode_token(token: str) -> Optional[dict]:
    """
    Lenient decoding.

    Returns:
        Claims, or None when the token is invalid or expired
    """
    try:
        return decode_access_token(token)
    except (TokenExpired, TokenInvalid):
        return None


def generate_opaque_token() -> str:
    """Random URL-safe token for refresh, reset and invitation links."""
    return secrets.token_urlsafe(48)


def hash_token(token: str) -> str:
    """SHA-256 hex digest; only digests of opaque tokens are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
