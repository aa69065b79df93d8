"""
Process-wide collaborators, built once at startup.

The IMAP client and the Google OAuth client are plain objects holding
configuration; endpoints receive them through FastAPI dependencies so
tests can swap in fakes with app.dependency_overrides.
"""

from functools import lru_cache

from app.config import get_settings
from app.services.google_auth_service import GoogleAuthService
from app.services.imap_service import MailboxClient


@lru_cache
def get_mailbox_client() -> MailboxClient:
    settings = get_settings()
    return MailboxClient(
        host=settings.imap_host,
        port=settings.imap_port,
        timeout=settings.imap_timeout,
        fallback_ids=settings.message_id_fallback,
    )


@lru_cache
def get_google_auth() -> GoogleAuthService:
    settings = get_settings()
    return GoogleAuthService(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_redirect_uri,
        token_uri=settings.google_token_uri,
    )
