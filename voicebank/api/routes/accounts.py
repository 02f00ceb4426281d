"""
Account Endpoints.
Balance, balance read-out and transaction history.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from voicebank.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


class OpenAccountRequest(BaseModel):
    user_id: str
    balance: int = Field(default=0, ge=0)
    account_number: Optional[str] = None
    full_name: Optional[str] = None


def _account_dict(account) -> dict:
    return {
        "user_id": account.user_id,
        "account_number": account.account_number,
        "balance": account.balance,
    }


@router.post("", status_code=201)
async def open_account(request: Request, body: OpenAccountRequest):
    ledger = request.app.state.ledger
    if await ledger.get_account(body.user_id) is not None:
        raise HTTPException(status_code=409, detail=f"Account already exists for {body.user_id}")

    account = await ledger.create_account(body.user_id, body.balance, body.account_number)
    if body.full_name:
        await request.app.state.profiles.create({"user_id": body.user_id, "full_name": body.full_name})
    return _account_dict(account)


@router.get("/{user_id}")
async def get_account(request: Request, user_id: str):
    account = await request.app.state.banking.refresh(user_id)
    return _account_dict(account)


@router.get("/{user_id}/balance-summary")
async def balance_summary(request: Request, user_id: str, language: str = "hi"):
    """Balance with the sentence the assistant reads out."""
    return await request.app.state.banking.balance_summary(user_id, language)


@router.get("/{user_id}/transactions")
async def list_transactions(
    request: Request,
    user_id: str,
    limit: int = Query(default=settings.TRANSACTION_HISTORY_LIMIT, ge=1, le=100)
):
    """Most recent transactions first."""
    transactions = await request.app.state.banking.list_transactions(user_id, limit)
    return {
        "user_id": user_id,
        "transactions": [tx.to_dict() for tx in transactions],
    }
