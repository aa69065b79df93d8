"""Session JWT creation and verification.

The token carries the account id as its only claim (`sub`) plus `exp`.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from app.config import get_settings


class SessionTokenError(Exception):
    """Token is malformed, badly signed, or missing claims."""


class SessionTokenExpired(SessionTokenError):
    pass


def create_session_token(account_id: int, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(days=settings.jwt_expires_days)
    claims = {
        "sub": str(account_id),
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_session_token(token: str) -> int:
    """
    Decode a session token and return the account id.

    Raises:
        SessionTokenExpired: the token's exp is in the past
        SessionTokenError: any other problem with the token
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require_exp": True, "require_sub": True},
        )
    except ExpiredSignatureError as e:
        raise SessionTokenExpired("Token expired") from e
    except JWTError as e:
        raise SessionTokenError(f"Invalid token: {e!s}") from e

    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise SessionTokenError("Token missing required claim: sub") from e
