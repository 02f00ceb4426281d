"""Database repositories initialization."""

from voicebank.db.repositories.ledger import LedgerRepository
from voicebank.db.repositories.profiles import ProfileRepository

__all__ = [
    "LedgerRepository",
    "ProfileRepository"
]
