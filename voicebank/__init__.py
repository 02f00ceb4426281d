"""
Voice Banking Assistant
=======================
A voice-first banking backend for users with limited literacy.

Features:
- Spoken send-money and pay-bill flows
- Hindi and English prompts, Devanagari and Latin input
- Voice biometric or spoken PIN authentication
- Idempotent ledger submission

Tech Stack:
- FastAPI (async backend)
- SQLAlchemy + aiosqlite (ledger and security profiles)
- edge-tts (prompt speech)
- Groq API (home-screen intent classification)
"""

__version__ = "1.0.0"
