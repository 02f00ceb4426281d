"""
Ledger Repository.
Data access layer for accounts and transactions.
"""

import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from voicebank.config import TRANSACTION_TYPES
from voicebank.core.exceptions import (
    AccountNotFoundException,
    InsufficientFundsException,
    LedgerException,
    LedgerUnavailableException,
)
from voicebank.db.database import get_db
from voicebank.db.models import Account, Transaction

logger = logging.getLogger(__name__)


def generate_account_number() -> str:
    return "".join(str(random.randint(0, 9)) for _ in range(12))


class LedgerRepository:
    """Repository for the account ledger."""

    async def get_account(self, user_id: str) -> Optional[Account]:
        """Get a user's account."""
        try:
            async with get_db() as db:
                result = await db.execute(select(Account).where(Account.user_id == user_id))
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise LedgerUnavailableException(str(e))

    async def create_account(
        self,
        user_id: str,
        balance: int = 0,
        account_number: Optional[str] = None
    ) -> Account:
        """Open an account for a user."""
        async with get_db() as db:
            account = Account(
                id=str(uuid4()),
                user_id=user_id,
                account_number=account_number or generate_account_number(),
                balance=balance,
            )
            db.add(account)
            await db.flush()
            logger.info(f"Created account for {user_id}")
            return account

    async def list_transactions(self, user_id: str, limit: int = 20) -> List[Transaction]:
        """Most recent transactions first."""
        try:
            async with get_db() as db:
                stmt = (
                    select(Transaction)
                    .where(Transaction.user_id == user_id)
                    .order_by(Transaction.created_at.desc())
                    .limit(limit)
                )
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise LedgerUnavailableException(str(e))

    async def submit_transaction(self, user_id: str, record: Dict[str, Any]) -> Transaction:
        """
        Apply one transaction and update the balance in a single DB transaction.

        A record whose idempotency key was already applied returns the
        stored transaction instead of applying it twice.
        """
        tx_type = record.get("type")
        amount = record.get("amount")
        if tx_type not in TRANSACTION_TYPES:
            raise LedgerException(f"Unknown transaction type: {tx_type}", reason="invalid_type", status_code=400)
        if not isinstance(amount, int) or amount <= 0:
            raise LedgerException(f"Invalid amount: {amount}", reason="invalid_amount", status_code=400)

        idempotency_key = record.get("idempotency_key")

        try:
            async with get_db() as db:
                if idempotency_key:
                    existing = await db.execute(
                        select(Transaction).where(Transaction.idempotency_key == idempotency_key)
                    )
                    duplicate = existing.scalar_one_or_none()
                    if duplicate is not None:
                        logger.info(f"Duplicate submission {idempotency_key}, returning original")
                        return duplicate

                result = await db.execute(select(Account).where(Account.user_id == user_id))
                account = result.scalar_one_or_none()
                if account is None:
                    raise AccountNotFoundException(user_id)

                if tx_type == "credit":
                    account.balance += amount
                else:
                    if amount > account.balance:
                        raise InsufficientFundsException(amount, account.balance)
                    account.balance -= amount

                transaction = Transaction(
                    id=str(uuid4()),
                    account_id=account.id,
                    user_id=user_id,
                    type=tx_type,
                    amount=amount,
                    description=record.get("description"),
                    recipient_name=record.get("recipient_name"),
                    recipient_phone=record.get("recipient_phone"),
                    bill_type=record.get("bill_type"),
                    status=record.get("status", "completed"),
                    idempotency_key=idempotency_key,
                    created_at=datetime.utcnow(),
                )
                db.add(transaction)
                await db.flush()

                logger.info(f"Ledger {tx_type} {amount} for {user_id}, balance now {account.balance}")
                return transaction
        except SQLAlchemyError as e:
            logger.error(f"Ledger write failed: {e}")
            raise LedgerUnavailableException(str(e))
