"""
Spoken PIN setup: say the PIN, say it again, store its hash.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import uuid4

from voicebank.core.interpreter import extract_pin
from voicebank.core.messages import get_prompt

logger = logging.getLogger(__name__)


class PinSetupStep(str, Enum):
    ENTER = "enter"
    CONFIRM = "confirm"
    DONE = "done"


@dataclass
class PinSetupResult:
    step: PinSetupStep
    message: str
    completed: bool = False


class PinSetupController:
    """
    Two-step PIN enrollment.

    A confirmation that does not match the first entry starts over from
    ENTER and nothing is stored. Used on its own from the security screen
    and embedded in a transaction flow's enroll stage.
    """

    def __init__(self, user_id: str, security, speech=None, language: str = "hi"):
        self.setup_id = str(uuid4())
        self.user_id = user_id
        self.security = security
        self.speech = speech
        self.language = language

        self.step = PinSetupStep.ENTER
        self._first_pin: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.step == PinSetupStep.DONE

    def start(self, prompt_key: str = "pin_setup_start") -> PinSetupResult:
        self._reset()
        return self._say(prompt_key)

    async def handle_transcript(self, text: str) -> Optional[PinSetupResult]:
        """Advance on a final transcript. Returns None once the PIN is stored."""
        if self.completed:
            return None

        pin = extract_pin(text)
        if pin is None:
            return self._say("pin_setup_unclear")

        if self.step == PinSetupStep.ENTER:
            self._first_pin = pin
            self.step = PinSetupStep.CONFIRM
            return self._say("pin_setup_confirm", digits=" ".join(pin))

        if pin != self._first_pin:
            logger.info(f"PIN confirmation mismatch for {self.user_id}")
            self._reset()
            return self._say("pin_setup_mismatch")

        if not await self.security.set_pin(self.user_id, pin):
            self._reset()
            return self._say("pin_setup_failed")

        self.step = PinSetupStep.DONE
        self._first_pin = None
        result = self._say("pin_setup_success")
        result.completed = True
        return result

    def to_dict(self):
        return {
            "setup_id": self.setup_id,
            "user_id": self.user_id,
            "step": self.step.value,
            "completed": self.completed,
        }

    def _reset(self):
        self.step = PinSetupStep.ENTER
        self._first_pin = None

    def _say(self, key: str, **values) -> PinSetupResult:
        message = get_prompt(key, self.language, **values)
        if self.speech is not None:
            self.speech.speak(message, self.language)
        return PinSetupResult(step=self.step, message=message)
