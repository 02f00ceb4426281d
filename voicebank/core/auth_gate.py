"""
Authentication Gate.
Decides how a transaction is proven (voice biometrics or spoken PIN) and
enforces the per-gate attempt budget.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from voicebank.config import get_settings
from voicebank.core.exceptions import AuthenticationException, GateConsumedException
from voicebank.core.interfaces import AudioSource
from voicebank.core.interpreter import extract_pin

logger = logging.getLogger(__name__)
settings = get_settings()


class AuthMethod(str, Enum):
    NONE = "none"
    VOICE = "voice"
    PIN = "pin"
    ENROLL = "enroll"


class AuthOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"
    UNCLEAR = "unclear"  # nothing usable heard, no attempt spent


@dataclass
class SecurityProfile:
    """What the user has enrolled. Read-only to the flow."""
    pin_hash_set: bool = False
    voice_profile_enrolled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pin_hash_set": self.pin_hash_set,
            "voice_profile_enrolled": self.voice_profile_enrolled,
        }


@dataclass
class AuthAttempt:
    """Result of one authentication attempt."""
    outcome: AuthOutcome
    method: AuthMethod
    attempts: int
    max_attempts: int
    score: Optional[float] = None
    error: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome == AuthOutcome.ACCEPTED

    @property
    def attempts_label(self) -> str:
        return f"Attempts: {self.attempts}/{self.max_attempts}"


class AuthenticationGate:
    """
    One authentication session guarding one transaction.

    The gate picks a method from the user's security profile, counts
    rejected attempts up to max_attempts and then refuses every further
    attempt without contacting the verifier or the profile store. A gate
    that ran out on voice may switch to PIN once, with a fresh budget.

    Once an accepted gate has been consumed by a transaction it cannot be
    used again.
    """

    def __init__(
        self,
        user_id: str,
        security,
        biometrics,
        audio: Optional[AudioSource] = None,
        max_attempts: Optional[int] = None
    ):
        self.user_id = user_id
        self.security = security
        self.biometrics = biometrics
        self.audio = audio
        self.max_attempts = max_attempts or settings.MAX_AUTH_ATTEMPTS

        self.method = AuthMethod.NONE
        self.profile = SecurityProfile()
        self.attempts = 0
        self.accepted = False
        self.consumed = False
        self.fallback_used = False

    @property
    def exhausted(self) -> bool:
        return not self.accepted and self.attempts >= self.max_attempts

    @property
    def attempts_label(self) -> str:
        return f"Attempts: {self.attempts}/{self.max_attempts}"

    @property
    def can_fallback_to_pin(self) -> bool:
        return (
            self.method == AuthMethod.VOICE
            and self.exhausted
            and not self.fallback_used
            and self.profile.pin_hash_set
        )

    async def select_method(self) -> AuthMethod:
        """
        Read the security profile and pick the method.

        Voice wins when a profile is enrolled and a verifier is configured,
        then PIN; with neither the caller has to enroll first.
        """
        self._check_usable()
        self.profile = await self.security.get_profile(self.user_id)

        if self.profile.voice_profile_enrolled and self.biometrics.available:
            self.method = AuthMethod.VOICE
        elif self.profile.pin_hash_set:
            self.method = AuthMethod.PIN
        else:
            self.method = AuthMethod.ENROLL

        logger.info(f"Auth method for {self.user_id}: {self.method.value}")
        return self.method

    async def authenticate(
        self,
        transcript: Optional[str] = None,
        audio: Optional[AudioSource] = None
    ) -> AuthAttempt:
        """Run one attempt with the selected method."""
        if self.method == AuthMethod.VOICE:
            return await self.attempt_voice(audio)
        if self.method == AuthMethod.PIN:
            return await self.attempt_pin(transcript or "")
        raise AuthenticationException(
            "No authentication method available",
            details={"method": self.method.value}
        )

    async def attempt_pin(self, transcript: str) -> AuthAttempt:
        """Check a spoken PIN against the stored digest."""
        self._check_usable()
        if self.exhausted:
            return self._result(AuthOutcome.EXHAUSTED, AuthMethod.PIN)
        if self.accepted:
            return self._result(AuthOutcome.ACCEPTED, AuthMethod.PIN)

        pin = extract_pin(transcript)
        if pin is None:
            return self._result(AuthOutcome.UNCLEAR, AuthMethod.PIN)

        if await self.security.verify_pin(self.user_id, pin):
            self.accepted = True
            logger.info(f"PIN accepted for {self.user_id}")
            return self._result(AuthOutcome.ACCEPTED, AuthMethod.PIN)

        return self._reject(AuthMethod.PIN)

    async def attempt_voice(self, audio: Optional[AudioSource] = None) -> AuthAttempt:
        """Capture one verification window and score it."""
        self._check_usable()
        if self.exhausted:
            return self._result(AuthOutcome.EXHAUSTED, AuthMethod.VOICE)
        if self.accepted:
            return self._result(AuthOutcome.ACCEPTED, AuthMethod.VOICE)

        source = audio or self.audio
        try:
            score = await self.biometrics.verify(self.user_id, source)
        except Exception as e:
            # A verifier failure spends the attempt like a mismatch would
            logger.error(f"Voice verification error for {self.user_id}: {e}")
            return self._reject(AuthMethod.VOICE, error=str(e))

        if score >= settings.VOICE_VERIFICATION_THRESHOLD:
            self.accepted = True
            logger.info(f"Voice accepted for {self.user_id} (score={score:.2f})")
            return self._result(AuthOutcome.ACCEPTED, AuthMethod.VOICE, score=score)

        return self._reject(AuthMethod.VOICE, score=score)

    def fallback_to_pin(self) -> bool:
        """Switch an exhausted voice gate to PIN with a fresh budget."""
        if not self.can_fallback_to_pin:
            return False

        self.method = AuthMethod.PIN
        self.attempts = 0
        self.fallback_used = True
        logger.info(f"Falling back to PIN for {self.user_id}")
        return True

    def consume(self):
        """Mark the gate as spent on a transaction."""
        if self.consumed:
            raise GateConsumedException()
        if not self.accepted:
            raise AuthenticationException(
                "Gate has not accepted an attempt",
                details={"attempts": self.attempts}
            )
        self.consumed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "attempts_label": self.attempts_label,
            "accepted": self.accepted,
            "exhausted": self.exhausted,
            "can_fallback_to_pin": self.can_fallback_to_pin,
        }

    def _check_usable(self):
        if self.consumed:
            raise GateConsumedException()

    def _reject(
        self,
        method: AuthMethod,
        score: Optional[float] = None,
        error: Optional[str] = None
    ) -> AuthAttempt:
        self.attempts += 1
        outcome = AuthOutcome.EXHAUSTED if self.exhausted else AuthOutcome.REJECTED
        logger.info(
            f"{method.value} attempt rejected for {self.user_id} ({self.attempts_label})"
        )
        return self._result(outcome, method, score=score, error=error)

    def _result(
        self,
        outcome: AuthOutcome,
        method: AuthMethod,
        score: Optional[float] = None,
        error: Optional[str] = None
    ) -> AuthAttempt:
        return AuthAttempt(
            outcome=outcome,
            method=method,
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            score=score,
            error=error,
        )
