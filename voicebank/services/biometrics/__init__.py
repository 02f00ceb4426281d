"""
Voice Biometric Service.
Runs the injected speaker verifier over live audio for enrollment and
verification. The verifier itself is an opaque engine; without one,
biometrics are reported as unavailable and PIN is used instead.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

import numpy as np

from voicebank.config import get_settings
from voicebank.core.exceptions import AuthenticationException, BiometricsUnavailableException
from voicebank.core.interfaces import AudioSource, VoiceVerifier

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class VerificationResult:
    """Outcome of one capture window."""
    score: float
    accepted: bool
    frames_scored: int
    duration_ms: float


@dataclass
class EnrollmentProgress:
    percentage: float
    feedback: str
    completed: bool = False


def pcm_to_array(frame: bytes) -> np.ndarray:
    """16-bit little-endian PCM bytes to an int16 array."""
    return np.frombuffer(frame, dtype=np.int16)


class VoiceBiometricService:
    """
    Enrollment and verification on top of a VoiceVerifier.

    Verification always resolves within VOICE_CAPTURE_MS of wall-clock time:
    every frame received in the window is scored and the scores averaged.
    """

    def __init__(self, security, verifier: Optional[VoiceVerifier] = None):
        self.security = security
        self.verifier = verifier
        # The verifier holds a single enrollment in progress
        self._enroll_lock = asyncio.Lock()

    @property
    def available(self) -> bool:
        return self.verifier is not None

    async def verify(self, user_id: str, audio: Optional[AudioSource]) -> float:
        """Average verifier score over one capture window."""
        result = await self.verify_window(user_id, audio)
        return result.score

    async def verify_window(
        self,
        user_id: str,
        audio: Optional[AudioSource],
        capture_ms: Optional[int] = None
    ) -> VerificationResult:
        if self.verifier is None:
            raise BiometricsUnavailableException()
        if audio is None:
            raise AuthenticationException(
                "No audio source for voice verification",
                details={"user_id": user_id}
            )

        profile = await self.security.get_voice_profile(user_id)
        if not profile:
            raise AuthenticationException(
                "No voice profile enrolled",
                details={"user_id": user_id}
            )

        capture_ms = capture_ms or settings.VOICE_CAPTURE_MS
        start_time = time.time()
        scores: List[float] = []

        async for frame in self._capture(audio, capture_ms / 1000):
            score = await self.verifier.verify(pcm_to_array(frame), profile)
            if score is not None:
                scores.append(score)

        score = float(np.mean(scores)) if scores else 0.0
        duration_ms = (time.time() - start_time) * 1000
        accepted = score >= settings.VOICE_VERIFICATION_THRESHOLD

        logger.info(
            f"Voice verification for {user_id}: score={score:.2f} "
            f"frames={len(scores)} ({duration_ms:.0f}ms)"
        )
        return VerificationResult(
            score=score,
            accepted=accepted,
            frames_scored=len(scores),
            duration_ms=duration_ms,
        )

    async def enroll(
        self,
        user_id: str,
        audio: AudioSource
    ) -> AsyncIterator[EnrollmentProgress]:
        """
        Feed audio to the verifier until it reports 100 percent, then store
        the exported profile. Frames are batched up to the verifier's
        min_enroll_samples; progress is yielded after every batch.
        """
        if self.verifier is None:
            raise BiometricsUnavailableException()

        async with self._enroll_lock:
            self.verifier.reset_enrollment()
            min_samples = self.verifier.min_enroll_samples
            pending: List[np.ndarray] = []
            pending_samples = 0

            async for frame in audio.frames():
                samples = pcm_to_array(frame)
                pending.append(samples)
                pending_samples += len(samples)
                if pending_samples < min_samples:
                    continue

                percentage, feedback = await self.verifier.enroll(np.concatenate(pending))
                pending, pending_samples = [], 0
                if percentage >= 100:
                    profile = await self.verifier.export()
                    await self.security.set_voice_profile(user_id, profile)
                    logger.info(f"Voice enrollment completed for {user_id}")
                    yield EnrollmentProgress(100.0, feedback, completed=True)
                    return
                yield EnrollmentProgress(float(percentage), feedback)

            self.verifier.reset_enrollment()
            logger.warning(f"Audio ended before voice enrollment completed for {user_id}")

    async def delete_profile(self, user_id: str):
        await self.security.clear_voice_profile(user_id)

    def cleanup(self):
        """Release verifier resources."""
        if self.verifier is not None:
            self.verifier.release()
        logger.info("Voice biometric service cleaned up")

    async def _capture(self, audio: AudioSource, window_s: float) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + window_s
        frames = audio.frames().__aiter__()

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                frame = await asyncio.wait_for(frames.__anext__(), timeout=remaining)
            except (asyncio.TimeoutError, StopAsyncIteration):
                break
            yield frame

        aclose = getattr(frames, "aclose", None)
        if aclose is not None:
            await aclose()


class QueueAudioSource:
    """AudioSource fed frame by frame by a transport such as a WebSocket."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def push(self, frame: bytes):
        if not self._closed:
            self._queue.put_nowait(frame)

    def close(self):
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
