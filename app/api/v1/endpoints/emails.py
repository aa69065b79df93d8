"""
Email API endpoints.

- POST /emails/sync: pull the newest messages of a folder from Gmail
- GET /emails, /emails/search: paginated views of the local cache
- GET /emails/folders: live folder list from IMAP
- GET /emails/stats: per-folder counts from the cache
- GET/PATCH /emails/{id}...: single message, live refetch, read/star

All routes require a bearer session token.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_account
from app.database import get_db
from app.dependencies import get_google_auth, get_mailbox_client
from app.exceptions import NotFoundError, ValidationError
from app.models.account import Account
from app.services import email_service
from app.services.email_sync import DEFAULT_SYNC_LIMIT, ensure_access_token, sync_emails
from app.services.google_auth_service import GoogleAuthService
from app.services.imap_service import MailboxClient


router = APIRouter(
    prefix="/emails",
    tags=["Emails"],
    dependencies=[Depends(get_current_account)]
)


# ============ Request / Response Schemas ============

class SyncRequest(BaseModel):
    folder: str = Field("INBOX", min_length=1, max_length=100)
    limit: int = Field(DEFAULT_SYNC_LIMIT, ge=1, le=500)


class SyncResponse(BaseModel):
    message: str
    synced: int
    total: int
    failed: int


class EmailSummary(BaseModel):
    """Fields shown in list and search views."""
    id: int
    uid: Optional[int]
    message_id: str
    subject: Optional[str]
    sender_email: Optional[str]
    sender_name: Optional[str]
    snippet: Optional[str]
    received_at: Optional[datetime]
    is_read: bool
    is_starred: bool
    has_attachments: bool
    folder: str

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    totalPages: int
    hasMore: bool


class EmailListResponse(BaseModel):
    emails: list[EmailSummary]
    pagination: Pagination


class SearchResponse(EmailListResponse):
    query: str


# ============ SYNC ============

@router.post("/sync", response_model=SyncResponse)
async def sync(
    body: Optional[SyncRequest] = None,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    mailbox: MailboxClient = Depends(get_mailbox_client),
    google_auth: GoogleAuthService = Depends(get_google_auth)
):
    """
    Sync the newest `limit` messages of `folder` into the local cache.

    Partial success is not an error: `synced` may be lower than the number
    fetched, and `total` is the size of the remote folder.
    """
    body = body or SyncRequest()
    report = await sync_emails(
        db, account.id, mailbox, google_auth,
        folder=body.folder, limit=body.limit
    )
    return SyncResponse(
        message="Emails synced successfully",
        synced=report.synced,
        total=report.total,
        failed=len(report.failed)
    )


# ============ LIST ENDPOINTS ============

@router.get("", response_model=EmailListResponse)
def list_emails(
    page: int = Query(1, ge=1, description="Page number (1-based)"),
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    folder: str = Query("INBOX", max_length=100),
    sort_by: str = Query("received_at", alias="sortBy"),
    sort_order: str = Query("DESC", alias="sortOrder", pattern="^(ASC|DESC|asc|desc)$"),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """
    Cached messages of one folder, newest first by default.

    **Example:**
    ```
    GET /api/emails?page=2&limit=20&folder=INBOX
    ```
    """
    return email_service.list_emails(
        db, account.id,
        page=page, limit=limit, folder=folder,
        sort_by=sort_by, sort_order=sort_order
    )


@router.get("/search", response_model=SearchResponse)
def search(
    q: str = Query(..., min_length=2, max_length=200, description="Substring to look for"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """Substring search over subject, snippet, sender and body."""
    query = q.strip()
    if len(query) < 2:
        raise ValidationError("Search query must be between 2 and 200 characters")

    result = email_service.search_emails(db, account.id, query, page=page, limit=limit)
    return {**result, "query": query}


@router.get("/folders")
async def folders(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    mailbox: MailboxClient = Depends(get_mailbox_client),
    google_auth: GoogleAuthService = Depends(get_google_auth)
):
    """Folder list straight from Gmail (not cached)."""
    access_token = await ensure_access_token(db, account, google_auth)
    return {"folders": await mailbox.get_folders(account.email, access_token)}


@router.get("/stats")
def stats(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    return {"stats": email_service.get_folder_stats(db, account.id)}


# ============ SINGLE EMAIL ============

@router.get("/{email_id}")
def get_email(
    email_id: int = Path(..., ge=1),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """
    Full cached message. Opening a message marks it read.

    **Returns:**
    - 200: Message with bodies
    - 404: No such message for this account
    """
    email = email_service.get_email_by_id(db, account.id, email_id)
    if email is None:
        raise NotFoundError("Email not found")

    email_service.mark_as_read(db, account.id, email_id)
    db.refresh(email)
    return {"email": email.to_full_dict()}


@router.get("/{email_id}/fresh")
async def get_fresh_email(
    email_id: int = Path(..., ge=1),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    mailbox: MailboxClient = Depends(get_mailbox_client),
    google_auth: GoogleAuthService = Depends(get_google_auth)
):
    """Refetch a message live from Gmail by its stored UID; the cache is untouched."""
    email = await email_service.fetch_fresh_email(db, account.id, email_id, mailbox, google_auth)
    received_at = email.get("received_at")
    if received_at is not None:
        email["received_at"] = received_at.isoformat()
    return {"email": email}


@router.patch("/{email_id}/read")
def mark_read(
    email_id: int = Path(..., ge=1),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    if not email_service.mark_as_read(db, account.id, email_id):
        raise NotFoundError("Email not found")
    return {"message": "Email marked as read"}


@router.patch("/{email_id}/star")
def toggle_star(
    email_id: int = Path(..., ge=1),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    email = email_service.toggle_star(db, account.id, email_id)
    if email is None:
        raise NotFoundError("Email not found")
    return {"message": "Star status toggled", "is_starred": email.is_starred}
