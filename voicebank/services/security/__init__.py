"""
Security Profile Service.
PIN hashing and verification, and the user's enrollment status.
"""

import hashlib
import hmac
import logging
import re
from typing import Optional

from voicebank.config import get_settings
from voicebank.core.auth_gate import SecurityProfile

logger = logging.getLogger(__name__)
settings = get_settings()


def hash_pin(pin: str) -> str:
    """SHA-256 hex digest of the PIN digits."""
    return hashlib.sha256(pin.encode("utf-8")).hexdigest()


def normalize_pin(pin: str) -> Optional[str]:
    """Keep only digits; None unless 4-6 remain."""
    digits = re.sub(r"\D", "", pin)
    if settings.PIN_MIN_LENGTH <= len(digits) <= settings.PIN_MAX_LENGTH:
        return digits
    return None


class SecurityProfileService:
    """Wraps the profile store with PIN handling."""

    def __init__(self, store):
        self.store = store

    async def get_profile(self, user_id: str) -> SecurityProfile:
        pin_hash = await self.store.get_pin_hash(user_id)
        voice_profile = await self.store.get_voice_profile(user_id)
        return SecurityProfile(
            pin_hash_set=bool(pin_hash),
            voice_profile_enrolled=bool(voice_profile),
        )

    async def set_pin(self, user_id: str, pin: str) -> bool:
        """Store the hash of a new PIN. Returns False if the PIN is malformed."""
        digits = normalize_pin(pin)
        if digits is None:
            logger.warning(f"Rejected malformed PIN for {user_id}")
            return False

        await self.store.set_pin_hash(user_id, hash_pin(digits))
        logger.info(f"PIN set for {user_id}")
        return True

    async def verify_pin(self, user_id: str, pin: str) -> bool:
        stored = await self.store.get_pin_hash(user_id)
        if not stored:
            return False
        return hmac.compare_digest(stored, hash_pin(pin))

    async def get_voice_profile(self, user_id: str) -> Optional[bytes]:
        return await self.store.get_voice_profile(user_id)

    async def set_voice_profile(self, user_id: str, profile: bytes):
        await self.store.set_voice_profile(user_id, profile)
        logger.info(f"Voice profile stored for {user_id}")

    async def clear_voice_profile(self, user_id: str):
        await self.store.clear_voice_profile(user_id)
        logger.info(f"Voice profile cleared for {user_id}")
