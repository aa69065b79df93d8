"""
Preference model - per-account settings, created lazily.
"""

import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from app.database import Base


class Theme(str, enum.Enum):
    """UI theme choice."""
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


DEFAULT_EMAILS_PER_PAGE = 20
MIN_EMAILS_PER_PAGE = 10
MAX_EMAILS_PER_PAGE = 100


class Preference(Base):
    __tablename__ = "preferences"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), unique=True, nullable=False)

    emails_per_page = Column(Integer, default=DEFAULT_EMAILS_PER_PAGE, nullable=False)
    default_folder = Column(String(100), default="INBOX", nullable=False)
    theme = Column(String(10), default=Theme.SYSTEM.value, nullable=False)
    notifications_enabled = Column(Boolean, default=True, nullable=False)
    auto_sync_interval = Column(Integer, default=5, nullable=False)  # minutes

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Preference(account_id={self.account_id}, theme={self.theme})>"

    def to_dict(self) -> dict:
        return {
            "emails_per_page": self.emails_per_page,
            "default_folder": self.default_folder,
            "theme": self.theme,
            "notifications_enabled": self.notifications_enabled,
            "auto_sync_interval": self.auto_sync_interval,
        }
