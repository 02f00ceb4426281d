"""
Collaborator contracts for the flow core.

The flow controller, authentication gate and executor only depend on these
protocols; concrete implementations live in voicebank.services and
voicebank.db, and tests substitute in-memory fakes.
"""

from typing import Any, AsyncIterator, List, Optional, Protocol, Tuple

import numpy as np


class SpeechOutput(Protocol):
    """Text-to-speech: fire-and-forget speak, immediate stop."""

    def speak(self, text: str, language: str = "hi") -> None: ...

    def stop(self) -> None: ...


class SpeechInput(Protocol):
    """The active speech-capture session, if any."""

    def stop_listening(self) -> None: ...


class AudioSource(Protocol):
    """Raw 16-bit PCM audio for biometric capture."""

    def frames(self) -> AsyncIterator[bytes]: ...


class Ledger(Protocol):
    """System of record for balances and transactions."""

    async def get_account(self, user_id: str) -> Any: ...

    async def list_transactions(self, user_id: str, limit: int = 20) -> List[Any]: ...

    async def submit_transaction(self, user_id: str, record: Any) -> Any: ...


class SecurityProfileStore(Protocol):
    """Where PIN hashes and voice profiles are kept."""

    async def get_pin_hash(self, user_id: str) -> Optional[str]: ...

    async def set_pin_hash(self, user_id: str, pin_hash: str) -> None: ...

    async def get_voice_profile(self, user_id: str) -> Optional[bytes]: ...

    async def set_voice_profile(self, user_id: str, profile: bytes) -> None: ...

    async def clear_voice_profile(self, user_id: str) -> None: ...


class VoiceVerifier(Protocol):
    """
    Speaker-verification engine.

    enroll() is fed chunks of at least min_enroll_samples samples until it
    reports 100 percent; export() then yields the opaque profile and
    reset_enrollment() discards a half-finished one. verify() scores audio
    against a stored profile, or returns None when the chunk was too short
    to score. release() frees engine resources.
    """

    @property
    def min_enroll_samples(self) -> int: ...

    async def enroll(self, pcm: np.ndarray) -> Tuple[float, str]: ...

    async def export(self) -> bytes: ...

    def reset_enrollment(self) -> None: ...

    async def verify(self, pcm: np.ndarray, profile: bytes) -> Optional[float]: ...

    def release(self) -> None: ...
