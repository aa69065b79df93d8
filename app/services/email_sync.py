"""
Email synchronization: remote mailbox -> local message cache.

One sync pass:
1. Resolve the account and make sure its access token is usable
   (refresh + persist first if it has expired)
2. Fetch the newest `limit` messages of one folder over IMAP
3. Upsert each message independently; a failed write is logged and
   reported, never fatal to the pass
4. Stamp the account's last_sync

No transaction spans the pass and nothing is retried. Re-running a pass
is idempotent for messages whose Message-ID is stable.
"""

import asyncio
import weakref
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from app.exceptions import AuthRequiredError
from app.logging_config import get_logger
from app.models.account import Account
from app.services import db_service
from app.services.google_auth_service import GoogleAuthService
from app.services.imap_service import MailboxClient

logger = get_logger(__name__)

DEFAULT_SYNC_LIMIT = 50

# One refresh at a time per account within this process; an entry lives
# only while some caller holds or waits on its lock
_refresh_locks = weakref.WeakValueDictionary()


def _refresh_lock(account_id: int) -> asyncio.Lock:
    lock = _refresh_locks.get(account_id)
    if lock is None:
        lock = asyncio.Lock()
        _refresh_locks[account_id] = lock
    return lock


@dataclass
class SyncItemResult:
    message_id: str
    ok: bool
    reason: Optional[str] = None


@dataclass
class SyncReport:
    """Outcome of one sync pass."""
    synced: int = 0
    total: int = 0
    results: list = field(default_factory=list)

    @property
    def failed(self) -> list:
        return [r for r in self.results if not r.ok]


async def ensure_access_token(
    db: Session,
    account: Account,
    google_auth: GoogleAuthService
) -> str:
    """
    Return a usable access token for the account.

    An expired token with a refresh token available is refreshed and
    persisted before being returned, so no fetch ever runs with a token
    known to be expired. Concurrent callers for the same account wait for
    one refresh and then reuse the stored result. Refresh failures
    propagate (TokenRefreshError).

    Raises:
        AuthRequiredError: the account has no access token at all
    """
    if not account.access_token:
        raise AuthRequiredError("No access token available. Please sign in with Google.")

    if account.is_token_expired() and account.refresh_token:
        async with _refresh_lock(account.id):
            # Another request may have refreshed while we waited
            db.refresh(account)
            if account.is_token_expired():
                logger.info("Access token expired for account %s, refreshing", account.id)
                tokens = await asyncio.to_thread(
                    google_auth.refresh_access_token, account.refresh_token
                )
                db_service.save_tokens(db, account, tokens)

    return account.access_token


async def sync_emails(
    db: Session,
    account_id: int,
    mailbox: MailboxClient,
    google_auth: GoogleAuthService,
    folder: str = "INBOX",
    limit: int = DEFAULT_SYNC_LIMIT
) -> SyncReport:
    """
    Run one sync pass for an account and folder.

    Args:
        db: Database session
        account_id: Account to sync
        mailbox: IMAP client
        google_auth: OAuth client used for token refresh
        folder: Remote folder name
        limit: Window size (newest N messages)

    Returns:
        SyncReport: synced = successful upserts, total = remote folder size

    Raises:
        NotFoundError: unknown account
        AuthRequiredError: account has no access token
        TokenRefreshError / MailboxConnectionError / FolderError: remote failures
    """
    account = db_service.require_account(db, account_id)
    access_token = await ensure_access_token(db, account, google_auth)

    fetched = await mailbox.fetch_emails(account.email, access_token, folder=folder, limit=limit)

    report = SyncReport(total=fetched.total)
    for record in fetched.emails:
        message_id = record["message_id"]
        try:
            db_service.upsert_message(db, account.id, record)
        except Exception as e:
            db.rollback()
            logger.error("Error syncing email %s: %s", message_id, e)
            report.results.append(SyncItemResult(message_id, ok=False, reason=str(e)))
            continue
        report.synced += 1
        report.results.append(SyncItemResult(message_id, ok=True))

    db_service.mark_synced(db, account)

    logger.info(
        "Synced %s/%s emails for account %s (%s failed, folder total %s)",
        report.synced, len(fetched.emails), account.id, len(report.failed), report.total
    )
    return report
