"""
Request dependencies shared by the protected routers.
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import AuthRequiredError
from app.logging_config import get_logger
from app.models.account import Account
from app.services import db_service
from app.services.session_token import (
    SessionTokenError,
    SessionTokenExpired,
    verify_session_token,
)

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_account(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> Account:
    """
    Resolve the bearer session token to an active Account.

    Every failure is a 401 with an {error, message} body.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthRequiredError("Please provide a valid token", error="Authentication required")

    try:
        account_id = verify_session_token(credentials.credentials)
    except SessionTokenExpired:
        raise AuthRequiredError(
            "Your session has expired. Please login again.", error="Token expired"
        )
    except SessionTokenError as e:
        logger.warning("Authentication error: %s", e)
        raise AuthRequiredError("The provided token is invalid", error="Invalid token")

    account = db_service.get_account(db, account_id)
    if account is None:
        raise AuthRequiredError(
            "The user associated with this token no longer exists", error="User not found"
        )
    if not account.is_active:
        raise AuthRequiredError("This account has been disabled", error="Account disabled")
    return account
