"""
Transaction Flow REST Endpoints.
Start send-money and bill-payment flows and feed them events.

Each response carries the flow snapshot and the prompts the assistant spoke
while handling the request, for clients that synthesize speech locally.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from voicebank.config import get_settings
from voicebank.core.flow import (
    AuthCancelRequested,
    BankingContext,
    CancelRequested,
    EnrollmentCompleted,
    FlowController,
    FlowKind,
    FlowServices,
    PinFallbackRequested,
    TargetSelected,
    TranscriptReceived,
)
from voicebank.services.tts import PromptRecorder

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


class StartFlowRequest(BaseModel):
    """Request model for starting a flow."""
    user_id: str
    kind: FlowKind = FlowKind.TRANSFER
    language: str = "hi"
    bill_dues: Dict[str, int] = Field(default_factory=dict)


class TranscriptRequest(BaseModel):
    text: str
    is_final: bool = True


class SelectRequest(BaseModel):
    value: str


def build_flow_services(app, speech=None) -> FlowServices:
    """Flow collaborators from application state."""
    return FlowServices(
        banking=app.state.banking,
        security=app.state.security,
        biometrics=app.state.biometrics,
        speech=speech or PromptRecorder(),
        agent_logger=app.state.agent_logger,
    )


def flow_response(controller: FlowController) -> Dict[str, Any]:
    speech = controller.services.speech
    spoken = speech.drain() if isinstance(speech, PromptRecorder) else []
    return {"flow": controller.to_dict(), "spoken": spoken}


async def _get_flow(request: Request, session_id: str) -> FlowController:
    return await request.app.state.flow_manager.get_flow(session_id)


@router.post("")
async def start_flow(request: Request, body: StartFlowRequest):
    """Start a new flow, replacing any unfinished flow of the same user."""
    if body.language not in settings.SUPPORTED_LANGUAGES:
        raise HTTPException(status_code=400, detail=f"Unsupported language: {body.language}")

    context = BankingContext.with_defaults(body.user_id, body.language)
    context.bill_dues = dict(body.bill_dues)

    controller = await request.app.state.flow_manager.create_flow(
        body.kind, context, build_flow_services(request.app)
    )
    return flow_response(controller)


@router.get("/{session_id}")
async def get_flow(request: Request, session_id: str):
    controller = await _get_flow(request, session_id)
    return flow_response(controller)


@router.post("/{session_id}/transcript")
async def post_transcript(request: Request, session_id: str, body: TranscriptRequest):
    """Feed a partial or final transcript."""
    controller = await _get_flow(request, session_id)
    await controller.dispatch(TranscriptReceived(body.text, body.is_final))
    return flow_response(controller)


@router.post("/{session_id}/select")
async def select_target(request: Request, session_id: str, body: SelectRequest):
    """On-screen pick of a contact or bill category."""
    controller = await _get_flow(request, session_id)
    await controller.dispatch(TargetSelected(body.value))
    return flow_response(controller)


@router.post("/{session_id}/cancel")
async def cancel_flow(request: Request, session_id: str):
    controller = await _get_flow(request, session_id)
    await controller.dispatch(CancelRequested())
    return flow_response(controller)


@router.post("/{session_id}/auth/cancel")
async def cancel_authentication(request: Request, session_id: str):
    """Leave authentication and return to confirmation."""
    controller = await _get_flow(request, session_id)
    await controller.dispatch(AuthCancelRequested())
    return flow_response(controller)


@router.post("/{session_id}/auth/fallback-pin")
async def fallback_to_pin(request: Request, session_id: str):
    controller = await _get_flow(request, session_id)
    await controller.dispatch(PinFallbackRequested())
    return flow_response(controller)


@router.post("/{session_id}/auth/enrolled")
async def enrollment_completed(request: Request, session_id: str):
    """Tell a flow waiting in enroll that the user enrolled elsewhere."""
    controller = await _get_flow(request, session_id)
    await controller.dispatch(EnrollmentCompleted())
    return flow_response(controller)


@router.delete("/{session_id}")
async def delete_flow(request: Request, session_id: str) -> Dict[str, Optional[str]]:
    await _get_flow(request, session_id)
    await request.app.state.flow_manager.delete_flow(session_id)
    return {"status": "deleted", "session_id": session_id}
