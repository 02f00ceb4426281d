"""
Speech-to-Text listening session.

Recognition runs on the client; the backend receives its stream of partial
and final results. A ListeningSession turns that stream into final
transcripts, promoting the last partial to final after a stretch of
silence, and maps recognizer errors to typed exceptions.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from voicebank.config import get_settings
from voicebank.core.exceptions import (
    STTException,
    STTNetworkException,
    STTNoSpeechException,
    STTPermissionDeniedException,
    STTUnsupportedException,
)

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class TranscriptResult:
    """One result from the recognizer."""
    text: str
    is_final: bool = False
    confidence: Optional[float] = None


@dataclass
class _RecognizerError:
    code: str


_STOP = object()


def map_recognizer_error(code: str) -> STTException:
    """Map a recognizer error code (Web Speech API names) to an exception."""
    if code in ("not-allowed", "service-not-allowed", "permission-denied"):
        return STTPermissionDeniedException()
    if code in ("unsupported", "language-not-supported"):
        return STTUnsupportedException()
    if code == "network":
        return STTNetworkException(code)
    if code == "no-speech":
        return STTNoSpeechException()
    return STTException(
        message=f"Speech recognition error: {code}",
        details={"error_type": code}
    )


class ListeningSession:
    """
    Consumes recognizer results pushed by the transport and calls
    on_final once per final transcript.

    If no new partial arrives within STT_SILENCE_TIMEOUT_MS, the pending
    partial is treated as final. stop_listening() ends the session at once
    and drops whatever partial is pending.
    """

    def __init__(
        self,
        on_final: Callable[[str], Awaitable[None]],
        on_partial: Optional[Callable[[str], Awaitable[None]]] = None,
        silence_timeout_ms: Optional[int] = None
    ):
        self.on_final = on_final
        self.on_partial = on_partial
        self.silence_timeout = (silence_timeout_ms or settings.STT_SILENCE_TIMEOUT_MS) / 1000

        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending_partial: Optional[str] = None
        self._listening = False
        self._stopped = False

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def stopped(self) -> bool:
        return self._stopped

    def push(self, result: TranscriptResult):
        if not self._stopped:
            self._queue.put_nowait(result)

    def fail(self, code: str):
        if not self._stopped:
            self._queue.put_nowait(_RecognizerError(code))

    def stop_listening(self):
        """Stop immediately; pending partial text is discarded."""
        if self._stopped:
            return
        self._stopped = True
        self._pending_partial = None
        self._queue.put_nowait(_STOP)
        logger.debug("Listening stopped")

    async def run(self):
        """
        Process results until stopped.

        Raises the mapped STTException when the recognizer reports an error.
        """
        self._listening = True
        try:
            while True:
                timeout = self.silence_timeout if self._pending_partial else None
                try:
                    item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    text = self._pending_partial
                    self._pending_partial = None
                    logger.debug(f"Silence timeout, promoting partial: {text}")
                    await self._emit_final(text)
                    continue

                if item is _STOP:
                    break
                if isinstance(item, _RecognizerError):
                    raise map_recognizer_error(item.code)

                await self._handle_result(item)
        finally:
            self._listening = False

    async def _handle_result(self, result: TranscriptResult):
        text = result.text.strip()
        if result.is_final:
            self._pending_partial = None
            if text:
                await self._emit_final(text)
            return

        self._pending_partial = text or None
        if text and self.on_partial is not None:
            await self.on_partial(text)

    async def _emit_final(self, text: Optional[str]):
        if not text or self._stopped:
            return
        start_time = time.time()
        await self.on_final(text)
        logger.debug(f"Final transcript handled in {(time.time() - start_time) * 1000:.0f}ms")
