"""
Account model - one authenticated Google user.

Holds the OAuth token store consulted by every remote fetch. The tokens
are secrets: to_safe_dict() is the only outward representation.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean
from sqlalchemy.sql import func
from app.database import Base


def utc_now() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)

    # ============ PROFILE ============
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255))
    picture = Column(String(500))
    google_id = Column(String(255), unique=True, index=True)

    # ============ TOKEN STORE (never exposed) ============
    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expiry = Column(DateTime)

    # ============ STATUS ============
    last_sync = Column(DateTime)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Account(id={self.id}, email={self.email})>"

    def is_token_expired(self, now: datetime = None) -> bool:
        """An account without a known expiry is treated as expired."""
        if not self.token_expiry:
            return True
        return (now or utc_now()) >= self.token_expiry

    def to_safe_dict(self) -> dict:
        """Profile fields only - tokens are stripped."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "picture": self.picture,
            "google_id": self.google_id,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
