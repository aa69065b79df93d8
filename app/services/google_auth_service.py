"""
Google OAuth2 client.

Wraps google-auth-oauthlib / google-auth for:
- Building the consent URL
- Exchanging an authorization code for tokens
- Looking up the Google profile (oauth2 v2 userinfo)
- Refreshing an expired access token

All methods are blocking; async callers run them in a worker thread.
"""

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from google.auth.exceptions import GoogleAuthError, RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from requests import RequestException

from app.exceptions import AuthRequiredError, TokenRefreshError
from app.logging_config import get_logger

logger = get_logger(__name__)

# Full IMAP access + basic profile
SCOPES = [
    "https://mail.google.com/",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

# Google adds "openid" to the granted scopes; don't treat that as an error
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None  # naive UTC, as google-auth reports it


@dataclass
class GoogleProfile:
    google_id: str
    email: str
    name: str = ""
    picture: str = ""


class GoogleAuthService:
    """OAuth client for one Google Cloud OAuth app (client id/secret pair)."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        token_uri: str = "https://oauth2.googleapis.com/token"
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_uri = token_uri

    def _flow(self) -> Flow:
        client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }
        return Flow.from_client_config(
            client_config,
            scopes=SCOPES,
            redirect_uri=self.redirect_uri
        )

    def get_auth_url(self) -> str:
        """Consent screen URL; offline + consent so Google issues a refresh token."""
        auth_url, _state = self._flow().authorization_url(
            access_type="offline",
            include_granted_scopes="true",
            prompt="consent"
        )
        return auth_url

    def exchange_code(self, code: str) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Raises:
            AuthRequiredError: Google rejected the code or returned no access token
        """
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except (OAuth2Error, GoogleAuthError, RequestException, ValueError) as e:
            logger.error("Error getting tokens: %s", e)
            raise AuthRequiredError("Failed to exchange authorization code for tokens") from e

        credentials = flow.credentials
        if not credentials.token:
            raise AuthRequiredError("No access token returned from Google")
        return TokenSet(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expiry=credentials.expiry
        )

    def get_user_info(self, access_token: str) -> GoogleProfile:
        """
        Fetch the Google profile for an access token.

        Raises:
            AuthRequiredError: Google refused the token or returned no account id
        """
        try:
            service = build(
                "oauth2", "v2",
                credentials=Credentials(token=access_token),
                cache_discovery=False
            )
            data = service.userinfo().get().execute()
        except (HttpError, GoogleAuthError, RequestException) as e:
            logger.error("Error fetching user info: %s", e)
            raise AuthRequiredError("Failed to fetch Google profile") from e

        if not data.get("id"):
            raise AuthRequiredError("Google profile has no account id")
        return GoogleProfile(
            google_id=str(data["id"]),
            email=data.get("email") or "",
            name=data.get("name") or "",
            picture=data.get("picture") or ""
        )

    def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """
        Obtain a new access token from a refresh token.

        Raises:
            TokenRefreshError: refresh token invalid/revoked or Google unreachable
        """
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES
        )
        try:
            credentials.refresh(Request())
        except (RefreshError, GoogleAuthError) as e:
            logger.error("Error refreshing token: %s", e)
            raise TokenRefreshError(
                "Failed to refresh access token. Please re-authenticate with Google."
            ) from e

        return TokenSet(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token or refresh_token,
            expiry=credentials.expiry
        )
