"""
Google OAuth authentication endpoints.

Flow:
1. GET /auth/google -> returns the Google consent URL
2. Google redirects back to /auth/google/callback with a code
3. The callback exchanges the code, finds or creates the account and
   redirects to the frontend with a session JWT
"""

from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_account
from app.config import get_settings
from app.database import get_db
from app.dependencies import get_google_auth
from app.exceptions import ValidationError
from app.logging_config import get_logger
from app.models.account import Account
from app.services import db_service
from app.services.google_auth_service import GoogleAuthService
from app.services.session_token import create_session_token

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# Response Models
class AuthUrlResponse(BaseModel):
    authUrl: str


class MessageResponse(BaseModel):
    message: str


def _error_redirect(message: str) -> RedirectResponse:
    frontend_url = get_settings().frontend_url
    return RedirectResponse(url=f"{frontend_url}/auth/error?message={quote(message)}")


@router.get("/google", response_model=AuthUrlResponse)
def google_login(google_auth: GoogleAuthService = Depends(get_google_auth)):
    """Return the Google consent screen URL for the frontend to navigate to."""
    return AuthUrlResponse(authUrl=google_auth.get_auth_url())


@router.get("/google/callback")
def google_callback(
    code: str = None,
    error: str = None,
    db: Session = Depends(get_db),
    google_auth: GoogleAuthService = Depends(get_google_auth)
):
    """
    OAuth callback - exchanges the authorization code and signs the user in.

    Always answers with a redirect to the frontend: /auth/callback?token=...
    on success, /auth/error?message=... otherwise.
    """
    if error:
        logger.error("OAuth error: %s", error)
        return _error_redirect(error)

    if not code:
        return _error_redirect("No authorization code provided")

    try:
        tokens = google_auth.exchange_code(code)
        profile = google_auth.get_user_info(tokens.access_token)
        account, created = db_service.find_or_create_account(db, profile, tokens)
    except Exception as e:
        logger.error("OAuth callback error: %s", e, exc_info=True)
        return _error_redirect("Authentication failed")

    logger.info("Account %s signed in (new=%s)", account.id, created)
    token = create_session_token(account.id)
    frontend_url = get_settings().frontend_url
    return RedirectResponse(url=f"{frontend_url}/auth/callback?token={token}")


@router.get("/me")
def me(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """Current account profile with preferences."""
    preferences = db_service.get_or_create_preferences(db, account.id)
    return {
        "user": {
            **account.to_safe_dict(),
            "preferences": preferences.to_dict(),
        }
    }


@router.post("/logout", response_model=MessageResponse)
def logout(account: Account = Depends(get_current_account)):
    """
    Session tokens are stateless; the client discards its token.
    """
    logger.info("Account %s logged out", account.id)
    return MessageResponse(message="Logged out successfully")


@router.post("/refresh", response_model=MessageResponse)
def refresh_token(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    google_auth: GoogleAuthService = Depends(get_google_auth)
):
    """
    Refresh the stored Google access token.

    Returns 400 when no refresh token is stored, 401 when Google refuses.
    """
    if not account.refresh_token:
        raise ValidationError(
            "No refresh token available. Please re-authenticate.",
            error="Refresh unavailable"
        )

    tokens = google_auth.refresh_access_token(account.refresh_token)
    db_service.save_tokens(db, account, tokens)
    return MessageResponse(message="Token refreshed successfully")
