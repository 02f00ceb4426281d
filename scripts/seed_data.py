"""
Seed Database with Sample Data.
Opens a demo account with a balance, a security profile with a spoken PIN,
and a short transaction history.
"""

import asyncio

from voicebank.db.database import init_db, close_db
from voicebank.db.repositories import LedgerRepository, ProfileRepository
from voicebank.services.security import SecurityProfileService

DEMO_USER_ID = "demo-user"
DEMO_PIN = "1234"


async def seed_account(ledger: LedgerRepository):
    """Seed the demo account."""
    print("🏦 Seeding account...")

    if await ledger.get_account(DEMO_USER_ID) is not None:
        print("   ⏭️  Account already exists")
        return

    await ledger.create_account(DEMO_USER_ID, balance=0, account_number="501234567890")
    print(f"   ✅ Opened account for {DEMO_USER_ID}")


async def seed_profile(profiles: ProfileRepository):
    """Seed the demo security profile."""
    print("🔐 Seeding security profile...")

    if await profiles.get(DEMO_USER_ID) is None:
        await profiles.create({
            "user_id": DEMO_USER_ID,
            "full_name": "Kamla Devi",
            "phone": "9876500000",
            "preferred_language": "hi",
        })

    security = SecurityProfileService(profiles)
    await security.set_pin(DEMO_USER_ID, DEMO_PIN)
    print(f"   ✅ PIN set to {DEMO_PIN}")


async def seed_transactions(ledger: LedgerRepository):
    """Seed a short history; the salary credit funds the account."""
    print("🧾 Seeding transactions...")

    transactions = [
        {
            "type": "credit",
            "amount": 15000,
            "description": "Salary credit",
            "idempotency_key": "seed-salary",
        },
        {
            "type": "debit",
            "amount": 500,
            "description": "Sent to राम कुमार",
            "recipient_name": "राम कुमार",
            "recipient_phone": "9876543210",
            "idempotency_key": "seed-transfer-1",
        },
        {
            "type": "bill",
            "amount": 850,
            "description": "बिजली bill payment",
            "bill_type": "electricity",
            "idempotency_key": "seed-bill-1",
        },
    ]

    for record in transactions:
        await ledger.submit_transaction(DEMO_USER_ID, {"status": "completed", **record})

    account = await ledger.get_account(DEMO_USER_ID)
    print(f"   ✅ Added {len(transactions)} transactions, balance ₹{account.balance}")


async def main():
    """Seed all data."""
    print("🌱 Starting database seeding...\n")

    await init_db()

    ledger = LedgerRepository()
    profiles = ProfileRepository()

    await seed_account(ledger)
    await seed_profile(profiles)
    await seed_transactions(ledger)

    await close_db()

    print("\n✅ Database seeding complete!")
    print(f"\n📊 Demo user: {DEMO_USER_ID}")


if __name__ == "__main__":
    asyncio.run(main())
