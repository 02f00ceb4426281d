"""
Banking Service.
Cached view of the user's account over the ledger, plus history reads and
the single write path used by the transaction executor.
"""

import logging
from typing import Any, Dict, List, Optional

from voicebank.config import get_settings
from voicebank.core.exceptions import AccountNotFoundException, InsufficientFundsException
from voicebank.core.messages import format_rupees, get_prompt

logger = logging.getLogger(__name__)
settings = get_settings()


class BankingService:
    """
    Account reads go through a per-user cache that is dropped after every
    mutation, so a later flow never acts on a stale balance.
    """

    def __init__(self, ledger):
        self.ledger = ledger
        self._accounts: Dict[str, Any] = {}

    async def get_account(self, user_id: str) -> Any:
        """Return the cached account, loading it on first use."""
        account = self._accounts.get(user_id)
        if account is None:
            account = await self.refresh(user_id)
        return account

    async def refresh(self, user_id: str) -> Any:
        """Re-read the account from the ledger and update the cache."""
        account = await self.ledger.get_account(user_id)
        if account is None:
            raise AccountNotFoundException(user_id)
        self._accounts[user_id] = account
        return account

    def invalidate(self, user_id: str):
        self._accounts.pop(user_id, None)

    def cached_balance(self, user_id: str) -> Optional[int]:
        account = self._accounts.get(user_id)
        return account.balance if account is not None else None

    async def get_balance(self, user_id: str) -> int:
        account = await self.get_account(user_id)
        return account.balance

    async def list_transactions(
        self,
        user_id: str,
        limit: Optional[int] = None
    ) -> List[Any]:
        """Most recent transactions first."""
        limit = limit or settings.TRANSACTION_HISTORY_LIMIT
        return await self.ledger.list_transactions(user_id, limit=limit)

    async def submit(self, user_id: str, record: Dict[str, Any]) -> Any:
        """Write one record to the ledger and drop the cached account."""
        try:
            return await self.ledger.submit_transaction(user_id, record)
        finally:
            self.invalidate(user_id)

    async def create_transaction(self, user_id: str, record: Dict[str, Any]) -> Any:
        """
        Checked write for callers outside the voice flows.

        Debits and bill payments must fit in the current balance.
        """
        if record.get("type") in ("debit", "bill"):
            account = await self.refresh(user_id)
            if record["amount"] > account.balance:
                raise InsufficientFundsException(record["amount"], account.balance)
        return await self.submit(user_id, record)

    async def balance_summary(self, user_id: str, language: str = "hi") -> Dict[str, Any]:
        """Balance plus the sentence the assistant reads out."""
        account = await self.refresh(user_id)
        return {
            "balance": account.balance,
            "account_number": account.account_number,
            "formatted": f"₹{format_rupees(account.balance)}",
            "spoken": get_prompt(
                "balance_summary", language, balance=format_rupees(account.balance)
            ),
        }
