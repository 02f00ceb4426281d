"""
Picovoice Eagle speaker verification.
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np
import pveagle

logger = logging.getLogger(__name__)

FEEDBACK_MESSAGES = {
    "AUDIO_OK": "Good, keep speaking",
    "AUDIO_TOO_SHORT": "Please speak a little longer",
    "UNKNOWN_SPEAKER": "A different voice was heard",
    "NO_VOICE_FOUND": "No voice was heard",
    "QUALITY_ISSUE": "Too much background noise",
}


class EagleVoiceVerifier:
    """
    VoiceVerifier backed by Eagle.

    One recognizer is kept per stored profile. Eagle scores fixed-length
    frames, so audio passed to verify() is cut into frame_length chunks and
    the remainder carried over to the next call for the same profile.
    """

    def __init__(self, access_key: str):
        self.access_key = access_key
        self._profiler = pveagle.create_profiler(access_key=access_key)
        self._recognizers: Dict[bytes, pveagle.Eagle] = {}
        self._carry: Dict[bytes, np.ndarray] = {}
        logger.info(f"Eagle profiler ready (min enroll samples: {self._profiler.min_enroll_samples})")

    @property
    def min_enroll_samples(self) -> int:
        return self._profiler.min_enroll_samples

    async def enroll(self, pcm: np.ndarray) -> Tuple[float, str]:
        percentage, feedback = self._profiler.enroll(pcm.tolist())
        return float(percentage), FEEDBACK_MESSAGES.get(feedback.name, feedback.name)

    async def export(self) -> bytes:
        profile = self._profiler.export()
        self._profiler.reset()
        return profile.to_bytes()

    def reset_enrollment(self):
        self._profiler.reset()

    async def verify(self, pcm: np.ndarray, profile: bytes) -> Optional[float]:
        recognizer = self._recognizer(profile)
        frame_length = recognizer.frame_length

        carry = self._carry.pop(profile, None)
        samples = np.concatenate([carry, pcm]) if carry is not None else pcm

        scores = []
        while len(samples) >= frame_length:
            frame, samples = samples[:frame_length], samples[frame_length:]
            scores.append(recognizer.process(frame.tolist())[0])

        if len(samples):
            self._carry[profile] = samples
        return float(np.mean(scores)) if scores else None

    def release(self):
        for recognizer in self._recognizers.values():
            recognizer.delete()
        self._recognizers.clear()
        self._carry.clear()
        self._profiler.delete()
        logger.info("Eagle resources released")

    def _recognizer(self, profile: bytes) -> pveagle.Eagle:
        recognizer = self._recognizers.get(profile)
        if recognizer is None:
            recognizer = pveagle.create_recognizer(
                access_key=self.access_key,
                speaker_profiles=[pveagle.EagleProfile.from_bytes(profile)],
            )
            self._recognizers[profile] = recognizer
        return recognizer


def create_verifier(access_key: Optional[str]) -> Optional[EagleVoiceVerifier]:
    """Eagle verifier for the access key, or None when biometrics stay off."""
    if not access_key:
        logger.warning("PICOVOICE_ACCESS_KEY not set, voice biometrics disabled")
        return None
    try:
        return EagleVoiceVerifier(access_key)
    except pveagle.EagleError as e:
        logger.error(f"Could not start Eagle, voice biometrics disabled: {e}")
        return None
