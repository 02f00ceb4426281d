"""
Voice WebSocket Endpoints.
Live transcripts, control messages and biometric audio for running flows,
and streamed voice-profile enrollment.
"""

import asyncio
import json
import logging
from typing import Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from voicebank.config import get_settings
from voicebank.core.exceptions import SessionNotFoundException, STTException, VoiceBankException
from voicebank.core.flow import (
    RECOGNIZER_ERROR_PROMPTS,
    AuthCancelRequested,
    CancelRequested,
    EnrollmentCompleted,
    PinFallbackRequested,
    RecognizerFailed,
    TargetSelected,
    TranscriptReceived,
    VoiceVerificationRequested,
)
from voicebank.core.messages import get_prompt
from voicebank.services.biometrics import QueueAudioSource
from voicebank.services.stt import ListeningSession, TranscriptResult
from voicebank.services.tts import TTSService

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()

# Control messages -> flow events
CONTROL_EVENTS = {
    "cancel": CancelRequested,
    "auth_cancel": AuthCancelRequested,
    "fallback_pin": PinFallbackRequested,
    "enrolled": EnrollmentCompleted,
}


@router.websocket("/flows/{session_id}")
async def flow_stream(websocket: WebSocket, session_id: str):
    """
    WebSocket endpoint attached to a running flow.

    Protocol:
    - JSON {"type": "partial" | "final", "text": "..."} - recognizer results
    - JSON {"type": "stt_error", "error": "not-allowed" | "network" | ...}
    - JSON {"type": "listen"} - start a new listening session
    - JSON {"type": "select", "value": "..."} - on-screen target pick
    - JSON {"type": "cancel" | "auth_cancel" | "fallback_pin" | "enrolled"}
    - JSON {"type": "verify_voice"} then binary 16 kHz 16-bit PCM frames,
      optionally closed by {"type": "audio_end"}
    - JSON {"type": "ping"}

    The server answers with {"type": "state", "flow": {...}} after every
    handled event and streams prompt audio as binary MP3 frames framed by
    tts_started / tts_ended messages.
    """
    await websocket.accept()
    app = websocket.app

    try:
        controller = await app.state.flow_manager.get_flow(session_id)
    except SessionNotFoundException as e:
        await websocket.send_json({"type": "error", "error": e.error_code, "message": e.message})
        await websocket.close(code=4404)
        return

    language = controller.session.language
    send_lock = asyncio.Lock()
    tasks: Set[asyncio.Task] = set()

    async def send_json(payload: dict):
        try:
            async with send_lock:
                await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Dropped message for closed socket {session_id}: {e}")

    async def send_audio(audio: bytes, text: str):
        try:
            async with send_lock:
                await websocket.send_bytes(audio)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Dropped audio for closed socket {session_id}: {e}")

    async def on_tts_event(event: str, payload: dict):
        await send_json({"type": f"tts_{event}", **payload})

    async def dispatch(event):
        await controller.dispatch(event)
        await send_json({"type": "state", "flow": controller.to_dict()})

    def spawn(coro):
        task = asyncio.create_task(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def on_final(text: str):
        await dispatch(TranscriptReceived(text))

    async def on_partial(text: str):
        await dispatch(TranscriptReceived(text, is_final=False))

    async def run_listening(session: ListeningSession):
        try:
            await session.run()
        except STTException as e:
            error_type = e.details.get("error_type", "unknown")
            logger.warning(f"Recognizer error on {session_id}: {e.message}")
            key = "no_speech" if error_type == "no_speech" else RECOGNIZER_ERROR_PROMPTS.get(error_type)
            message = (
                get_prompt(key, language) if key
                else get_prompt("service_error", language, detail=e.message)
            )
            await send_json({"type": "stt_error", "error": error_type, "message": message})
            await dispatch(RecognizerFailed(error_type, e.message))

    listening: Optional[ListeningSession] = None
    verification_audio: Optional[QueueAudioSource] = None

    def start_listening() -> ListeningSession:
        session = ListeningSession(on_final=on_final, on_partial=on_partial)
        controller.services.listener = session
        spawn(run_listening(session))
        return session

    # Route this flow's prompts to the socket while it is attached
    previous_speech = controller.services.speech
    tts = TTSService(on_audio=send_audio, on_event=on_tts_event)
    controller.services.speech = tts
    listening = start_listening()

    await send_json({"type": "state", "flow": controller.to_dict()})

    try:
        while True:
            message = await websocket.receive()

            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect()

            if message.get("bytes") is not None:
                if verification_audio is not None:
                    verification_audio.push(message["bytes"])
                continue

            try:
                data = json.loads(message.get("text") or "")
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON message: {message.get('text')}")
                continue

            msg_type = data.get("type")

            if msg_type in ("partial", "final"):
                if listening is None or listening.stopped:
                    listening = start_listening()
                listening.push(TranscriptResult(
                    text=data.get("text", ""),
                    is_final=msg_type == "final",
                    confidence=data.get("confidence"),
                ))

            elif msg_type == "stt_error":
                if listening is not None:
                    listening.fail(data.get("error", "unknown"))
                    listening = None

            elif msg_type == "listen":
                if listening is None or listening.stopped:
                    listening = start_listening()

            elif msg_type == "select":
                spawn(dispatch(TargetSelected(str(data.get("value", "")))))

            elif msg_type in CONTROL_EVENTS:
                spawn(dispatch(CONTROL_EVENTS[msg_type]()))

            elif msg_type == "verify_voice":
                if verification_audio is not None:
                    verification_audio.close()
                verification_audio = QueueAudioSource()
                spawn(dispatch(VoiceVerificationRequested(verification_audio)))

            elif msg_type == "audio_end":
                if verification_audio is not None:
                    verification_audio.close()
                    verification_audio = None

            elif msg_type == "ping":
                await send_json({"type": "pong"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {session_id}")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
    finally:
        tts.stop()
        if listening is not None:
            listening.stop_listening()
        if verification_audio is not None:
            verification_audio.close()
        controller.services.speech = previous_speech
        controller.services.listener = None


@router.websocket("/enroll/{user_id}")
async def enroll_stream(websocket: WebSocket, user_id: str):
    """
    Voice-profile enrollment.

    The client streams binary 16 kHz 16-bit PCM frames; the server answers
    with {"type": "progress", "percentage", "feedback", "completed"} until
    the verifier has enough audio. {"type": "end"} stops early.
    """
    await websocket.accept()
    app = websocket.app
    biometrics = app.state.biometrics

    if not biometrics.available:
        await websocket.send_json({
            "type": "error",
            "error": "AUTH_ERROR",
            "message": "Voice biometric verifier is not configured"
        })
        await websocket.close(code=4503)
        return

    audio = QueueAudioSource()

    async def run_enrollment():
        try:
            async for progress in biometrics.enroll(user_id, audio):
                await websocket.send_json({
                    "type": "progress",
                    "percentage": progress.percentage,
                    "feedback": progress.feedback,
                    "completed": progress.completed,
                })
                if progress.completed:
                    active = await app.state.flow_manager.get_active_flow(user_id)
                    if active is not None:
                        await active.dispatch(EnrollmentCompleted())
        except VoiceBankException as e:
            logger.error(f"Enrollment failed for {user_id}: {e.message}")
            await websocket.send_json({"type": "error", "error": e.error_code, "message": e.message})

    task = asyncio.create_task(run_enrollment())

    try:
        while not task.done():
            message = await websocket.receive()

            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect()

            if message.get("bytes") is not None:
                audio.push(message["bytes"])
                continue

            if message.get("text"):
                try:
                    data = json.loads(message["text"])
                except json.JSONDecodeError:
                    continue
                if data.get("type") == "end":
                    audio.close()
                    await task
                    await websocket.send_json({"type": "done"})
                    await websocket.close()
                    break

    except WebSocketDisconnect:
        logger.info(f"Enrollment socket disconnected: {user_id}")
    finally:
        audio.close()
        if not task.done():
            task.cancel()
