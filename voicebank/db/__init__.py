"""Database module initialization."""

from voicebank.db.database import init_db, close_db, get_db
from voicebank.db.models import Account, Transaction, Profile

__all__ = [
    "init_db",
    "close_db",
    "get_db",
    "Account",
    "Transaction",
    "Profile"
]
