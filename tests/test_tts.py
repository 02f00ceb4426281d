"""Tests for prompt speech output."""

import asyncio

import pytest

from voicebank.core.exceptions import TTSUnsupportedLanguageException
from voicebank.services import tts as tts_module
from voicebank.services.tts import PromptRecorder, TTSService


class FakeCommunicate:
    """Replaces edge_tts.Communicate; yields two audio chunks."""

    delay = 0.0

    def __init__(self, text, voice, rate=None):
        self.text = text
        self.voice = voice

    async def stream(self):
        await asyncio.sleep(self.delay)
        yield {"type": "audio", "data": b"ab"}
        yield {"type": "WordBoundary", "offset": 0}
        yield {"type": "audio", "data": b"cd"}


@pytest.fixture
def fake_edge_tts(monkeypatch):
    monkeypatch.setattr(tts_module.edge_tts, "Communicate", FakeCommunicate)
    FakeCommunicate.delay = 0.0
    return FakeCommunicate


def test_prompt_recorder():
    recorder = PromptRecorder()
    recorder.speak("नमस्ते", "hi")
    assert recorder.drain() == [{"text": "नमस्ते", "language": "hi"}]
    assert recorder.drain() == []

    recorder.speak("x")
    recorder.stop()
    assert recorder.drain() == []


async def test_synthesize(fake_edge_tts):
    assert await TTSService().synthesize("hello", "en") == b"abcd"


async def test_unsupported_language(fake_edge_tts):
    with pytest.raises(TTSUnsupportedLanguageException):
        await TTSService().synthesize("hola", "es")


async def test_speak_delivers_audio_and_events(fake_edge_tts):
    audio, events = [], []

    async def on_audio(data, text):
        audio.append(data)

    async def on_event(event, payload):
        events.append(event)

    service = TTSService(on_audio=on_audio, on_event=on_event)
    service.speak("हाँ", "hi")
    await service._task

    assert audio == [b"abcd"]
    assert events == ["started", "ended"]


async def test_new_prompt_interrupts_current(fake_edge_tts):
    fake_edge_tts.delay = 0.05
    spoken = []

    async def on_audio(data, text):
        spoken.append(text)

    service = TTSService(on_audio=on_audio)
    service.speak("first", "en")
    await asyncio.sleep(0)
    service.speak("second", "en")
    await service._task

    assert spoken == ["second"]


async def test_stop(fake_edge_tts):
    fake_edge_tts.delay = 0.05
    service = TTSService()
    service.speak("long prompt", "en")
    assert service.is_speaking

    service.stop()
    assert not service.is_speaking
