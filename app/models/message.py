"""
Message model - cached copy of one remote mailbox entry.

Deduplication is enforced by the unique (account_id, message_id)
constraint; db_service.upsert_message writes against it atomically.
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, JSON,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.sql import func
from app.database import Base


# Columns returned by list/search views (no bodies)
LIST_FIELDS = (
    "id", "uid", "message_id", "subject", "sender_email", "sender_name",
    "snippet", "received_at", "is_read", "is_starred", "has_attachments",
    "folder",
)


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)

    # ============ REMOTE IDENTITY ============
    message_id = Column(String(255), nullable=False, index=True)
    uid = Column(Integer)  # IMAP UID, NULL for rows never synced over IMAP
    thread_id = Column(String(255))

    # ============ ENVELOPE ============
    subject = Column(Text)
    sender_email = Column(String(255), index=True)
    sender_name = Column(String(255))
    recipient_email = Column(String(255))
    received_at = Column(DateTime, index=True)

    # ============ CONTENT ============
    snippet = Column(Text)
    body_text = Column(Text)
    body_html = Column(Text)
    has_attachments = Column(Boolean, default=False, nullable=False)

    # ============ STATE ============
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    is_starred = Column(Boolean, default=False, nullable=False)
    labels = Column(JSON, default=list)
    folder = Column(String(100), default="INBOX", nullable=False, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("account_id", "message_id", name="uq_messages_account_message"),
        Index("ix_messages_account_folder_received", "account_id", "folder", "received_at"),
    )

    def __repr__(self):
        return f"<Message(id={self.id}, sender={self.sender_email}, subject={self.subject[:30] if self.subject else ''})>"

    def to_list_dict(self) -> dict:
        """Fields needed for list and search views."""
        data = {field: getattr(self, field) for field in LIST_FIELDS}
        data["received_at"] = self.received_at.isoformat() if self.received_at else None
        return data

    def to_full_dict(self) -> dict:
        """All fields for the single-message view."""
        return {
            **self.to_list_dict(),
            "thread_id": self.thread_id,
            "recipient_email": self.recipient_email,
            "body_text": self.body_text,
            "body_html": self.body_html,
            "labels": self.labels or [],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
