"""
Text-to-Speech Service using edge-tts.
Fire-and-forget speech with started/ended/error events and immediate stop.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import edge_tts

from voicebank.config import TTS_VOICES, get_settings
from voicebank.core.exceptions import TTSException, TTSUnsupportedLanguageException

logger = logging.getLogger(__name__)
settings = get_settings()

# Slightly slower than default, easier to follow on a phone speaker
SPEECH_RATE = "-10%"

AudioCallback = Callable[[bytes, str], Awaitable[None]]
EventCallback = Callable[[str, dict], Awaitable[None]]


class TTSService:
    """
    Speaks prompts for the voice flows.

    speak() returns immediately; synthesis and delivery run as a task. A new
    speak() or stop() interrupts whatever is still playing, so the user
    never hears two prompts at once.
    """

    def __init__(
        self,
        on_audio: Optional[AudioCallback] = None,
        on_event: Optional[EventCallback] = None
    ):
        self.on_audio = on_audio
        self.on_event = on_event
        self._supported_languages = list(TTS_VOICES.keys())
        self._task: Optional[asyncio.Task] = None

    @property
    def is_speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(self, text: str, language: str = "hi") -> None:
        if not text.strip():
            return
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._speak(text, language))

    def stop(self) -> None:
        if self.is_speaking:
            self._task.cancel()
            logger.debug("Speech stopped")
        self._task = None

    async def synthesize(self, text: str, language: str = "hi") -> bytes:
        """Synthesize the whole utterance to MP3 bytes."""
        if language not in self._supported_languages:
            raise TTSUnsupportedLanguageException(language, self._supported_languages)

        communicate = edge_tts.Communicate(text, TTS_VOICES[language], rate=SPEECH_RATE)
        audio_data = b""
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio_data += chunk["data"]

        if not audio_data:
            raise TTSException("No audio produced", details={"language": language})
        return audio_data

    async def _speak(self, text: str, language: str):
        await self._emit("started", {"text": text, "language": language})
        start_time = time.time()
        try:
            audio = await asyncio.wait_for(
                self.synthesize(text, language),
                timeout=settings.TTS_TIMEOUT_SECONDS
            )
            if self.on_audio is not None:
                await self.on_audio(audio, text)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.error(f"TTS timed out after {settings.TTS_TIMEOUT_SECONDS}s")
            await self._emit("error", {"text": text, "error": "timeout"})
            return
        except Exception as e:
            logger.error(f"TTS error: {e}")
            await self._emit("error", {"text": text, "error": str(e)})
            return

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(f"Spoke {len(text)} chars in {duration_ms:.0f}ms")
        await self._emit("ended", {"text": text, "language": language})

    async def _emit(self, event: str, payload: dict):
        if self.on_event is None:
            return
        try:
            await self.on_event(event, payload)
        except Exception as e:
            logger.warning(f"TTS {event} listener failed: {e}")


class PromptRecorder:
    """
    Speech output for clients that synthesize prompts themselves.

    Keeps the prompts spoken since the last drain() and produces no audio.
    """

    def __init__(self):
        self._pending = []

    def speak(self, text: str, language: str = "hi") -> None:
        self._pending.append({"text": text, "language": language})

    def stop(self) -> None:
        self._pending.clear()

    def drain(self) -> list:
        pending, self._pending = self._pending, []
        return pending
