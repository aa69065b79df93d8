"""
SQLAlchemy models for the Gmail viewer.

This package contains:
- Account: Authenticated Google user and their OAuth tokens
- Message: Cached copy of one remote mailbox entry
- Preference: Per-account UI/sync preferences (one-to-one with Account)

Deleting an Account removes its Messages and Preference in the service
layer (db_service.delete_account), not through database cascades.
"""

from app.models.account import Account
from app.models.message import Message
from app.models.preference import Preference

__all__ = ["Account", "Message", "Preference"]
