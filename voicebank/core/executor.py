"""
Transaction Executor.
Re-checks funds against a fresh balance and submits exactly one ledger record.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from voicebank.config import TRANSACTION_TYPES
from voicebank.core.exceptions import LedgerException
from voicebank.core.interpreter import BillCategory, RecipientMatch

logger = logging.getLogger(__name__)

DEBIT_TYPES = ("debit", "bill")


class ExecutionStatus(str, Enum):
    SUBMITTED = "submitted"
    REJECTED = "rejected"


@dataclass
class TransactionRequest:
    """The record handed to the ledger."""
    tx_type: str
    amount: int
    description: str
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    bill_type: Optional[str] = None
    idempotency_key: str = field(default_factory=lambda: str(uuid4()))

    @classmethod
    def build(
        cls,
        tx_type: str,
        amount: int,
        description: str,
        target: Any = None,
        idempotency_key: Optional[str] = None
    ) -> "TransactionRequest":
        request = cls(tx_type=tx_type, amount=amount, description=description)
        if idempotency_key:
            request.idempotency_key = idempotency_key

        if isinstance(target, RecipientMatch):
            request.recipient_name = target.name
            # New contacts are sent without a phone number
            if not target.is_new_contact:
                request.recipient_phone = target.phone
        elif isinstance(target, BillCategory):
            request.bill_type = target.id
        return request

    def to_record(self) -> Dict[str, Any]:
        record = {
            "type": self.tx_type,
            "amount": self.amount,
            "description": self.description,
            "status": "completed",
            "idempotency_key": self.idempotency_key,
        }
        if self.recipient_name:
            record["recipient_name"] = self.recipient_name
        if self.recipient_phone:
            record["recipient_phone"] = self.recipient_phone
        if self.bill_type:
            record["bill_type"] = self.bill_type
        return record


@dataclass
class ExecutionResult:
    status: ExecutionStatus
    reason: Optional[str] = None
    transaction: Any = None
    balance: Optional[int] = None

    @property
    def submitted(self) -> bool:
        return self.status == ExecutionStatus.SUBMITTED

    @classmethod
    def rejected(cls, reason: str, balance: Optional[int] = None) -> "ExecutionResult":
        return cls(status=ExecutionStatus.REJECTED, reason=reason, balance=balance)


class TransactionExecutor:
    """
    Submits an authorized transaction to the ledger.

    The balance is re-read at call time, independent of whatever the flow
    saw at confirmation. Debits that exceed it are rejected before the
    ledger write path is touched. A submission is attempted once; failures
    are returned, never retried.
    """

    def __init__(self, banking):
        self.banking = banking

    async def execute(
        self,
        user_id: str,
        tx_type: str,
        amount: int,
        description: str,
        target: Any = None,
        idempotency_key: Optional[str] = None
    ) -> ExecutionResult:
        if tx_type not in TRANSACTION_TYPES:
            return ExecutionResult.rejected("invalid_type")
        if not isinstance(amount, int) or amount <= 0:
            return ExecutionResult.rejected("invalid_amount")

        try:
            account = await self.banking.refresh(user_id)
        except LedgerException as e:
            logger.error(f"Balance re-check failed for {user_id}: {e.message}")
            return ExecutionResult.rejected(e.reason)
        except Exception as e:
            logger.error(f"Balance re-check failed for {user_id}: {e}")
            return ExecutionResult.rejected("ledger_unavailable")

        if tx_type in DEBIT_TYPES and amount > account.balance:
            logger.info(
                f"Rejected {tx_type} of {amount} for {user_id}: balance {account.balance}"
            )
            return ExecutionResult.rejected("insufficient_funds", balance=account.balance)

        request = TransactionRequest.build(
            tx_type, amount, description, target, idempotency_key
        )

        try:
            transaction = await self.banking.submit(user_id, request.to_record())
        except LedgerException as e:
            logger.error(f"Ledger rejected {request.idempotency_key}: {e.message}")
            self.banking.invalidate(user_id)
            return ExecutionResult.rejected(e.reason)
        except Exception as e:
            logger.error(f"Ledger submission failed for {request.idempotency_key}: {e}")
            self.banking.invalidate(user_id)
            return ExecutionResult.rejected("ledger_error")

        logger.info(f"Submitted {tx_type} of {amount} for {user_id} ({request.idempotency_key})")
        return ExecutionResult(
            status=ExecutionStatus.SUBMITTED,
            transaction=transaction,
        )
