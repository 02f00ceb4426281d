"""
SQLAlchemy Database Models.
Accounts, ledger transactions and per-user security profiles.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, LargeBinary
from sqlalchemy.orm import relationship

from voicebank.db.database import Base


class Account(Base):
    """Bank account entity. One per user."""
    __tablename__ = "accounts"

    id = Column(String(50), primary_key=True)
    user_id = Column(String(100), unique=True, nullable=False, index=True)
    account_number = Column(String(30), nullable=False)
    balance = Column(Integer, nullable=False, default=0)  # whole rupees

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, onupdate=datetime.utcnow)

    # Relationships
    transactions = relationship("Transaction", back_populates="account", lazy="noload")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "account_number": self.account_number,
            "balance": self.balance,
        }

    def __repr__(self):
        return f"<Account {self.account_number}: {self.balance}>"


class Transaction(Base):
    """Ledger entry entity."""
    __tablename__ = "transactions"

    id = Column(String(50), primary_key=True)
    account_id = Column(String(50), ForeignKey("accounts.id"), index=True)
    user_id = Column(String(100), index=True)

    type = Column(String(20), nullable=False)  # credit, debit, bill
    amount = Column(Integer, nullable=False)
    description = Column(String(255))
    recipient_name = Column(String(255))
    recipient_phone = Column(String(20))
    bill_type = Column(String(50))
    status = Column(String(20), default="completed")
    idempotency_key = Column(String(100), unique=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    account = relationship("Account", back_populates="transactions")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "amount": self.amount,
            "description": self.description,
            "recipient_name": self.recipient_name,
            "recipient_phone": self.recipient_phone,
            "bill_type": self.bill_type,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Transaction {self.id}: {self.type} {self.amount}>"


class Profile(Base):
    """User profile with security enrollment."""
    __tablename__ = "profiles"

    user_id = Column(String(100), primary_key=True)
    full_name = Column(String(255))
    phone = Column(String(20))
    preferred_language = Column(String(10), default="hi")

    voice_pin_hash = Column(String(64))
    voice_pin_set_at = Column(DateTime)
    voice_profile_data = Column(LargeBinary)
    voice_profile_enrolled_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Profile {self.user_id}>"
