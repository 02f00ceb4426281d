"""Tests for the banking and security profile services."""

import pytest

from voicebank.core.exceptions import AccountNotFoundException, InsufficientFundsException
from voicebank.core.messages import format_rupees
from voicebank.services.security import hash_pin, normalize_pin

from tests.conftest import USER_ID


@pytest.mark.parametrize("amount,expected", [
    (0, "0"),
    (500, "500"),
    (1250, "1,250"),
    (125000, "1,25,000"),
    (12345678, "1,23,45,678"),
])
def test_format_rupees(amount, expected):
    assert format_rupees(amount) == expected


class TestBankingService:
    async def test_account_is_cached_until_mutation(self, banking, ledger):
        assert await banking.get_balance(USER_ID) == 10000
        ledger.accounts[USER_ID].balance = 7000
        assert await banking.get_balance(USER_ID) == 10000

        await banking.submit(USER_ID, {
            "type": "credit", "amount": 100, "description": "Refund", "idempotency_key": "k"
        })
        assert banking.cached_balance(USER_ID) is None
        assert await banking.get_balance(USER_ID) == 7100

    async def test_unknown_user(self, banking):
        with pytest.raises(AccountNotFoundException):
            await banking.refresh("nobody")

    async def test_create_transaction_checks_balance(self, banking, ledger):
        with pytest.raises(InsufficientFundsException):
            await banking.create_transaction(USER_ID, {
                "type": "debit", "amount": 20000, "description": "Too much", "idempotency_key": "k"
            })
        assert ledger.submissions == 0

    async def test_balance_summary(self, banking, ledger):
        ledger.accounts[USER_ID].balance = 24580
        summary = await banking.balance_summary(USER_ID, "hi")
        assert summary["formatted"] == "₹24,580"
        assert summary["spoken"] == "आपके खाते में ₹24,580 उपलब्ध हैं।"

    async def test_list_transactions_newest_first(self, banking):
        for key in ("a", "b"):
            await banking.submit(USER_ID, {
                "type": "debit", "amount": 10, "description": key, "idempotency_key": key
            })
        transactions = await banking.list_transactions(USER_ID)
        assert [tx.description for tx in transactions] == ["b", "a"]


class TestSecurityProfileService:
    def test_hash_is_deterministic_sha256(self):
        assert hash_pin("1234") == hash_pin("1234")
        assert hash_pin("1234") != hash_pin("1235")
        assert len(hash_pin("1234")) == 64

    @pytest.mark.parametrize("raw,expected", [
        ("1234", "1234"),
        ("12-34-56", "123456"),
        ("123", None),
        ("1234567", None),
    ])
    def test_normalize_pin(self, raw, expected):
        assert normalize_pin(raw) == expected

    async def test_set_and_verify(self, security, store):
        assert await security.set_pin(USER_ID, "4321")
        assert store.pin_hashes[USER_ID] == hash_pin("4321")
        assert await security.verify_pin(USER_ID, "4321")
        assert not await security.verify_pin(USER_ID, "1234")

    async def test_malformed_pin_not_stored(self, security, store):
        assert not await security.set_pin(USER_ID, "12")
        assert store.pin_hashes == {}

    async def test_verify_without_pin(self, security):
        assert not await security.verify_pin(USER_ID, "1234")

    async def test_profile(self, security, store):
        store.voice_profiles[USER_ID] = b"profile"
        profile = await security.get_profile(USER_ID)
        assert profile.to_dict() == {"pin_hash_set": False, "voice_profile_enrolled": True}
