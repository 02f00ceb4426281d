"""
Voice Command Endpoint.
Home-screen intent classification.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from voicebank.config import get_settings
from voicebank.core.exceptions import LedgerException, LLMException
from voicebank.services.llm import VoiceCommandResponse

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


class CommandRequest(BaseModel):
    message: str
    language: str = "hi"
    user_id: Optional[str] = None


@router.post("", response_model=VoiceCommandResponse)
async def classify_command(request: Request, body: CommandRequest):
    """
    Classify a spoken command into an intent with a short spoken reply.

    The user's real balance is given to the classifier when a user id is
    supplied, so balance answers read out the actual amount.
    """
    start_time = time.time()

    balance = None
    if body.user_id:
        try:
            balance = await request.app.state.banking.get_balance(body.user_id)
        except LedgerException as e:
            logger.warning(f"No balance for command context: {e.message}")

    try:
        result = await request.app.state.intent_classifier.classify(
            body.message, body.language, balance
        )
    except LLMException as e:
        logger.error(f"Intent classification failed: {e.message}")
        return JSONResponse(
            status_code=e.status_code,
            content={
                **VoiceCommandResponse.error(body.language).model_dump(),
                "error": e.message,
            }
        )

    logger.info(f"Command handled in {(time.time() - start_time) * 1000:.0f}ms: {result.intent}")
    return result
