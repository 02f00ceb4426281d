"""
Database Initialization Script.
Creates the ledger and profile tables.
"""

import asyncio

from voicebank.config import get_settings
from voicebank.db.database import init_db, close_db


async def main():
    """Initialize the database."""
    print("🗄️  Initializing database...")

    await init_db()
    await close_db()

    print("✅ Database initialized successfully!")
    print(f"📁 Database location: {get_settings().DATABASE_URL}")


if __name__ == "__main__":
    asyncio.run(main())
