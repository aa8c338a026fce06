"""
Pairing and JWT authentication for Hearth.

The control app trades the display's pairing code for a signed bearer
token (30 days). Every write endpoint then verifies that token.

This is a trusted-LAN design: the pairing code is static for the server's
lifetime and there is no lockout after failed attempts.
"""

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

ALGORITHM = "HS256"
TOKEN_SUBJECT = "admin"
TOKEN_EXPIRE_DAYS = 30

PAIRING_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # No 0/O, 1/I
PAIRING_CODE_LENGTH = 6


class TokenData(BaseModel):
    """Decoded token data."""

    subject: str
    expires_at: datetime
    issued_at: datetime


def generate_pairing_code(length: int = PAIRING_CODE_LENGTH) -> str:
    return "".join(secrets.choice(PAIRING_CHARS) for _ in range(length))


def generate_token_secret() -> str:
    return secrets.token_urlsafe(32)


def generate_device_id() -> str:
    return str(uuid.uuid4())


def pairing_code_matches(stored: Optional[str], submitted: str) -> bool:
    """Case-sensitive, constant-time comparison of pairing codes."""
    if not stored:
        return False
    return secrets.compare_digest(stored.encode(), submitted.encode())


def create_token(
    secret: str,
    now: Optional[datetime] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a control token.

    Args:
        secret: The server's token signing secret
        now: Issue time (defaults to the current time)
        expires_delta: Custom lifetime (default 30 days)

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(days=TOKEN_EXPIRE_DAYS)

    now = now or datetime.now(timezone.utc)
    to_encode = {
        "sub": TOKEN_SUBJECT,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Optional[TokenData]:
    """
    Decode a token and check its signature.

    Expiry is not checked here; see ``verify_token``.

    Returns:
        TokenData if the token is well formed and correctly signed, else None
    """
    if not token or not secret:
        return None
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"verify_exp": False, "verify_iat": False},
        )
        return TokenData(
            subject=str(payload.get("sub", "")),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            issued_at=datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc),
        )
    except (JWTError, KeyError, TypeError, ValueError, OverflowError):
        return None


def verify_token(
    token: str, secret: str, now: Optional[datetime] = None
) -> Optional[TokenData]:
    """
    Verify a control token.

    Args:
        token: The JWT token string
        secret: The server's token signing secret
        now: Time to check expiry against (defaults to the current time)

    Returns:
        TokenData if valid, unexpired and issued for the control subject,
        None otherwise
    """
    token_data = decode_token(token, secret)

    if token_data is None:
        return None

    if token_data.subject != TOKEN_SUBJECT:
        return None

    now = now or datetime.now(timezone.utc)
    if token_data.expires_at <= now:
        return None

    return token_data
