"""
Database service layer for the Gmail viewer.

This module provides the local store operations:
- upsert_message: Atomic insert-or-update keyed by (account_id, message_id)
- Account lookup, find-or-create on login, token persistence
- Preferences (created lazily) and per-account statistics
- delete_account: Application-level cascade to messages and preferences
"""

from typing import Optional

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.logging_config import get_logger
from app.models.account import Account, utc_now
from app.models.message import Message
from app.models.preference import (
    MAX_EMAILS_PER_PAGE,
    MIN_EMAILS_PER_PAGE,
    Preference,
    Theme,
)
from app.services.google_auth_service import GoogleProfile, TokenSet

logger = get_logger(__name__)

# Message columns a sync record may write
UPSERT_COLUMNS = (
    "message_id", "uid", "thread_id", "subject", "sender_email", "sender_name",
    "recipient_email", "snippet", "body_text", "body_html", "received_at",
    "is_read", "is_starred", "has_attachments", "folder", "labels",
)

PREFERENCE_FIELDS = (
    "emails_per_page", "default_folder", "theme",
    "notifications_enabled", "auto_sync_interval",
)


# ============ ACCOUNT OPERATIONS ============

def get_account(db: Session, account_id: int) -> Optional[Account]:
    return db.get(Account, account_id)


def require_account(db: Session, account_id: int) -> Account:
    """
    Raises:
        NotFoundError: no account with this id
    """
    account = get_account(db, account_id)
    if account is None:
        raise NotFoundError(f"Account {account_id} not found", error="User not found")
    return account


def find_or_create_account(
    db: Session,
    profile: GoogleProfile,
    tokens: TokenSet
) -> tuple[Account, bool]:
    """
    Find the account for a Google profile, or create it on first login.

    Existing accounts get fresh tokens and profile data; a missing refresh
    token (Google only sends it on consent) keeps the stored one. New
    accounts also get a default Preference row.

    Returns:
        (account, created)

    Raises:
        ConflictError: the email already belongs to a different Google account
    """
    account = db.query(Account).filter(Account.google_id == profile.google_id).first()

    if account:
        account.access_token = tokens.access_token
        account.refresh_token = tokens.refresh_token or account.refresh_token
        account.token_expiry = tokens.expiry or account.token_expiry
        account.name = profile.name or account.name
        account.picture = profile.picture or account.picture
        db.commit()
        db.refresh(account)
        return account, False

    account = Account(
        email=profile.email,
        name=profile.name,
        picture=profile.picture,
        google_id=profile.google_id,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_expiry=tokens.expiry
    )
    try:
        db.add(account)
        db.flush()
        db.add(Preference(account_id=account.id))
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("Account creation for %s rejected: %s", profile.email, e)
        raise ConflictError("An account with this email already exists") from e
    db.refresh(account)
    logger.info("Created account %s for %s", account.id, account.email)
    return account, True


def save_tokens(db: Session, account: Account, tokens: TokenSet) -> Account:
    """Persist a refreshed access token (and expiry) before it is used."""
    account.access_token = tokens.access_token
    if tokens.refresh_token:
        account.refresh_token = tokens.refresh_token
    account.token_expiry = tokens.expiry or account.token_expiry
    db.commit()
    db.refresh(account)
    return account


def mark_synced(db: Session, account: Account) -> None:
    account.last_sync = utc_now()
    db.commit()


def delete_account(db: Session, account_id: int) -> bool:
    """
    Delete an account with its messages and preferences.

    Returns:
        False if the account did not exist
    """
    account = get_account(db, account_id)
    if account is None:
        return False

    db.query(Message).filter(Message.account_id == account_id).delete(synchronize_session=False)
    db.query(Preference).filter(Preference.account_id == account_id).delete(synchronize_session=False)
    db.delete(account)
    db.commit()
    logger.info("Account %s deleted with all data", account_id)
    return True


def get_account_stats(db: Session, account: Account) -> dict:
    """Totals across all folders for the profile page."""
    total, unread, starred = db.query(
        func.count(Message.id),
        func.sum(case((Message.is_read.is_(False), 1), else_=0)),
        func.sum(case((Message.is_starred.is_(True), 1), else_=0)),
    ).filter(Message.account_id == account.id).one()

    return {
        "totalEmails": int(total or 0),
        "unreadEmails": int(unread or 0),
        "starredEmails": int(starred or 0),
        "lastSync": account.last_sync.isoformat() if account.last_sync else None,
    }


# ============ MESSAGE OPERATIONS ============

def _dialect_insert(db: Session):
    """INSERT construct with ON CONFLICT support, or None for other backends."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def upsert_message(db: Session, account_id: int, record: dict) -> None:
    """
    Insert or overwrite one cached message.

    Keyed by the (account_id, message_id) unique constraint, so the write
    is a single atomic statement on PostgreSQL and SQLite. Other backends
    fall back to check-then-write with an IntegrityError retry.

    Raises:
        SQLAlchemyError: the write failed (session is left for the caller to roll back)
    """
    values = {column: record[column] for column in UPSERT_COLUMNS if column in record}
    values["account_id"] = account_id

    insert = _dialect_insert(db)
    if insert is not None:
        stmt = insert(Message).values(**values)
        changes = {
            column: stmt.excluded[column]
            for column in values
            if column not in ("account_id", "message_id")
        }
        changes["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "message_id"],
            set_=changes
        )
        db.execute(stmt)
        db.commit()
        return

    _upsert_message_portable(db, account_id, values)


def _upsert_message_portable(db: Session, account_id: int, values: dict) -> None:
    existing = db.query(Message).filter(
        Message.account_id == account_id,
        Message.message_id == values["message_id"]
    ).first()

    if existing is None:
        db.add(Message(**values))
        try:
            db.commit()
            return
        except IntegrityError:
            # Race condition - another sync inserted it first
            db.rollback()
            existing = db.query(Message).filter(
                Message.account_id == account_id,
                Message.message_id == values["message_id"]
            ).one()

    for column, value in values.items():
        setattr(existing, column, value)
    db.commit()


def set_read(db: Session, account_id: int, email_id: int) -> int:
    """Returns the number of rows updated (0 or 1)."""
    result = db.execute(
        update(Message)
        .where(Message.id == email_id, Message.account_id == account_id)
        .values(is_read=True)
    )
    db.commit()
    return result.rowcount


# ============ PREFERENCES ============

def get_or_create_preferences(db: Session, account_id: int) -> Preference:
    preference = db.query(Preference).filter(Preference.account_id == account_id).first()
    if preference is None:
        preference = Preference(account_id=account_id)
        db.add(preference)
        db.commit()
        db.refresh(preference)
    return preference


def validate_preferences(changes: dict) -> None:
    """
    Raises:
        ValidationError: a value is outside its allowed range
    """
    per_page = changes.get("emails_per_page")
    if per_page is not None and not MIN_EMAILS_PER_PAGE <= per_page <= MAX_EMAILS_PER_PAGE:
        raise ValidationError(
            f"Emails per page must be between {MIN_EMAILS_PER_PAGE} and {MAX_EMAILS_PER_PAGE}"
        )
    theme = changes.get("theme")
    if theme is not None and theme not in {t.value for t in Theme}:
        raise ValidationError("Theme must be light, dark, or system")
    interval = changes.get("auto_sync_interval")
    if interval is not None and not 1 <= interval <= 60:
        raise ValidationError("Auto sync interval must be between 1 and 60 minutes")


def update_preferences(db: Session, account_id: int, changes: dict) -> Preference:
    """Apply only the fields present in `changes`; create the row if missing."""
    changes = {k: v for k, v in changes.items() if k in PREFERENCE_FIELDS and v is not None}
    validate_preferences(changes)

    preference = get_or_create_preferences(db, account_id)
    for field, value in changes.items():
        setattr(preference, field, value)
    db.commit()
    db.refresh(preference)
    return preference
