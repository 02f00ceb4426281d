"""
Security Profile Endpoints.
Spoken PIN setup, enrollment status and voice-profile removal.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from voicebank.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


class PinSetupRequest(BaseModel):
    user_id: str
    language: str = "hi"


class PinSetupTranscript(BaseModel):
    text: str


@router.post("/pin-setup")
async def start_pin_setup(request: Request, body: PinSetupRequest):
    """Start a spoken PIN setup: say the PIN, then say it again."""
    if body.language not in settings.SUPPORTED_LANGUAGES:
        raise HTTPException(status_code=400, detail=f"Unsupported language: {body.language}")

    controller = await request.app.state.flow_manager.create_pin_setup(
        body.user_id, request.app.state.security, body.language
    )
    result = controller.start()
    return {**controller.to_dict(), "message": result.message}


@router.post("/pin-setup/{setup_id}/transcript")
async def pin_setup_transcript(request: Request, setup_id: str, body: PinSetupTranscript):
    controller = await request.app.state.flow_manager.get_pin_setup(setup_id)
    result = await controller.handle_transcript(body.text)
    return {
        **controller.to_dict(),
        "message": result.message if result else None,
    }


@router.get("/{user_id}")
async def get_security_profile(request: Request, user_id: str):
    profile = await request.app.state.security.get_profile(user_id)
    return {
        "user_id": user_id,
        **profile.to_dict(),
        "voice_biometrics_available": request.app.state.biometrics.available,
    }


@router.delete("/{user_id}/voice-profile")
async def delete_voice_profile(request: Request, user_id: str):
    await request.app.state.biometrics.delete_profile(user_id)
    return {"status": "deleted", "user_id": user_id}
