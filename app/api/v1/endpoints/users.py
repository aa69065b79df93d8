"""
User profile, preferences, statistics and account deletion.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_account
from app.database import get_db
from app.logging_config import get_logger
from app.models.account import Account
from app.models.preference import MAX_EMAILS_PER_PAGE, MIN_EMAILS_PER_PAGE, Theme
from app.services import db_service

logger = get_logger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    dependencies=[Depends(get_current_account)]
)


class PreferencesUpdate(BaseModel):
    """Partial update - omitted fields are left unchanged."""
    emails_per_page: Optional[int] = Field(None, ge=MIN_EMAILS_PER_PAGE, le=MAX_EMAILS_PER_PAGE)
    default_folder: Optional[str] = Field(None, min_length=1, max_length=100)
    theme: Optional[Theme] = None
    notifications_enabled: Optional[bool] = None
    auto_sync_interval: Optional[int] = Field(None, ge=1, le=60)


@router.get("/profile")
def profile(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """Account profile without OAuth tokens."""
    preferences = db_service.get_or_create_preferences(db, account.id)
    return {"user": {**account.to_safe_dict(), "preferences": preferences.to_dict()}}


@router.get("/preferences")
def get_preferences(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    preferences = db_service.get_or_create_preferences(db, account.id)
    return {"preferences": preferences.to_dict()}


@router.put("/preferences")
def update_preferences(
    body: PreferencesUpdate,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    preferences = db_service.update_preferences(
        db, account.id, body.model_dump(exclude_none=True, mode="json")
    )
    return {"message": "Preferences updated", "preferences": preferences.to_dict()}


@router.get("/stats")
def stats(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    return {"stats": db_service.get_account_stats(db, account)}


@router.delete("/account")
def delete_account(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """Delete the account together with its cached messages and preferences."""
    account_id = account.id
    db_service.delete_account(db, account_id)
    logger.info("Account %s deleted their account", account_id)
    return {"message": "Account deleted successfully"}
