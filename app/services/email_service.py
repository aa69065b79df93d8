"""
Query service over the local message cache.

Listing and search use classic offset/limit pagination:
    offset = (page - 1) * limit
and return the shared pagination block from build_pagination().
Page and limit are validated by the API layer; nothing is clamped here.
"""

import math
from typing import Optional

from sqlalchemy import func, or_, case
from sqlalchemy.orm import Session

from app.exceptions import NotFoundError, ValidationError
from app.logging_config import get_logger
from app.models.message import Message
from app.services import db_service
from app.services.email_sync import ensure_access_token
from app.services.google_auth_service import GoogleAuthService
from app.services.imap_service import MailboxClient

logger = get_logger(__name__)

SORTABLE_COLUMNS = {
    "received_at": Message.received_at,
    "subject": Message.subject,
    "sender_email": Message.sender_email,
    "sender_name": Message.sender_name,
    "created_at": Message.created_at,
}

# Columns matched by search (substring, store collation decides case)
SEARCH_COLUMNS = (
    Message.subject,
    Message.snippet,
    Message.sender_email,
    Message.sender_name,
    Message.body_text,
)


def build_pagination(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "hasMore": page * limit < total,
    }


def _paginate(query, page: int, limit: int, order_by) -> dict:
    total = query.order_by(None).count()
    rows = query.order_by(*order_by).offset((page - 1) * limit).limit(limit).all()
    return {
        "emails": rows,
        "pagination": build_pagination(total, page, limit),
    }


def list_emails(
    db: Session,
    account_id: int,
    page: int = 1,
    limit: int = 20,
    folder: str = "INBOX",
    sort_by: str = "received_at",
    sort_order: str = "DESC"
) -> dict:
    """
    One page of cached messages in a folder.

    Returns:
        {"emails": [Message, ...], "pagination": {...}}
    """
    column = SORTABLE_COLUMNS.get(sort_by)
    if column is None:
        raise ValidationError(f"Cannot sort by {sort_by}")
    direction = column.asc() if sort_order.upper() == "ASC" else column.desc()

    query = db.query(Message).filter(
        Message.account_id == account_id,
        Message.folder == folder
    )
    # id breaks ties so pages never overlap
    return _paginate(query, page, limit, (direction, Message.id.desc()))


def search_emails(
    db: Session,
    account_id: int,
    query: str,
    page: int = 1,
    limit: int = 20
) -> dict:
    """
    Substring search over subject, snippet, sender and body text.

    LIKE wildcards in the query are matched literally.
    """
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"

    q = db.query(Message).filter(
        Message.account_id == account_id,
        or_(*[column.like(pattern, escape="\\") for column in SEARCH_COLUMNS])
    )
    return _paginate(q, page, limit, (Message.received_at.desc(), Message.id.desc()))


def get_email_by_id(db: Session, account_id: int, email_id: int) -> Optional[Message]:
    return db.query(Message).filter(
        Message.id == email_id,
        Message.account_id == account_id
    ).first()


def mark_as_read(db: Session, account_id: int, email_id: int) -> bool:
    """True if the message exists for this account (already-read counts)."""
    return db_service.set_read(db, account_id, email_id) > 0


def toggle_star(db: Session, account_id: int, email_id: int) -> Optional[Message]:
    email = get_email_by_id(db, account_id, email_id)
    if email is None:
        return None
    email.is_starred = not email.is_starred
    db.commit()
    db.refresh(email)
    return email


def get_folder_stats(db: Session, account_id: int) -> list[dict]:
    """Per-folder message and unread counts."""
    rows = db.query(
        Message.folder,
        func.count(Message.id),
        func.sum(case((Message.is_read.is_(False), 1), else_=0)),
    ).filter(
        Message.account_id == account_id
    ).group_by(Message.folder).order_by(Message.folder).all()

    return [
        {"folder": folder, "total": int(total), "unread": int(unread or 0)}
        for folder, total, unread in rows
    ]


async def fetch_fresh_email(
    db: Session,
    account_id: int,
    email_id: int,
    mailbox: MailboxClient,
    google_auth: GoogleAuthService
) -> dict:
    """
    Re-fetch a cached message live from IMAP by its stored UID and folder.

    The local cache is not updated.

    Raises:
        NotFoundError: no such message for this account
        ValidationError: the row was never synced over IMAP (no UID)
    """
    cached = get_email_by_id(db, account_id, email_id)
    if cached is None:
        raise NotFoundError("Email not found")
    if cached.uid is None:
        raise ValidationError("Cannot fetch fresh - no UID available")

    account = db_service.require_account(db, account_id)
    access_token = await ensure_access_token(db, account, google_auth)

    logger.info("Fetching message uid=%s from %s live for account %s", cached.uid, cached.folder, account_id)
    email = await mailbox.fetch_email_by_uid(account.email, access_token, cached.uid, cached.folder)
    email["id"] = cached.id
    return email
