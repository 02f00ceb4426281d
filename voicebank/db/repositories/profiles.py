"""
Profile Repository.
Stores PIN hashes and voice profiles for the security profile service.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select

from voicebank.db.database import get_db
from voicebank.db.models import Profile

logger = logging.getLogger(__name__)


class ProfileRepository:
    """Repository for user profiles."""

    async def get(self, user_id: str) -> Optional[Profile]:
        async with get_db() as db:
            result = await db.execute(select(Profile).where(Profile.user_id == user_id))
            return result.scalar_one_or_none()

    async def create(self, data: dict) -> Profile:
        async with get_db() as db:
            profile = Profile(**data)
            db.add(profile)
            await db.flush()
            return profile

    async def get_pin_hash(self, user_id: str) -> Optional[str]:
        profile = await self.get(user_id)
        return profile.voice_pin_hash if profile else None

    async def set_pin_hash(self, user_id: str, pin_hash: str) -> None:
        async with get_db() as db:
            profile = await self._get_or_create(db, user_id)
            profile.voice_pin_hash = pin_hash
            profile.voice_pin_set_at = datetime.utcnow()

    async def get_voice_profile(self, user_id: str) -> Optional[bytes]:
        profile = await self.get(user_id)
        return profile.voice_profile_data if profile else None

    async def set_voice_profile(self, user_id: str, profile_data: bytes) -> None:
        async with get_db() as db:
            profile = await self._get_or_create(db, user_id)
            profile.voice_profile_data = profile_data
            profile.voice_profile_enrolled_at = datetime.utcnow()

    async def clear_voice_profile(self, user_id: str) -> None:
        async with get_db() as db:
            result = await db.execute(select(Profile).where(Profile.user_id == user_id))
            profile = result.scalar_one_or_none()
            if profile is not None:
                profile.voice_profile_data = None
                profile.voice_profile_enrolled_at = None

    async def _get_or_create(self, db, user_id: str) -> Profile:
        result = await db.execute(select(Profile).where(Profile.user_id == user_id))
        profile = result.scalar_one_or_none()
        if profile is None:
            profile = Profile(user_id=user_id)
            db.add(profile)
            logger.info(f"Created profile for {user_id}")
        return profile
