"""
Flow State Machine.
Drives one send-money or bill-payment conversation from target collection
through confirmation and authentication to a single ledger submission.

Every input reaches the machine as an event on the flow's queue. One
consumer drains the queue, so a flow is never advanced from two places at
once; cancel is the only event applied immediately.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from voicebank.config import DEFAULT_CONTACTS, get_settings
from voicebank.core.auth_gate import AuthAttempt, AuthenticationGate, AuthMethod, AuthOutcome
from voicebank.core.exceptions import FlowStateException, LedgerException
from voicebank.core.executor import TransactionExecutor
from voicebank.core.interfaces import AudioSource, SpeechInput, SpeechOutput
from voicebank.core.interpreter import (
    AMBIGUOUS,
    BillCategory,
    Contact,
    InterpretationContext,
    RecipientMatch,
    classify_confirmation,
    extract_amount,
    find_bill_category,
    interpret,
    match_recipient,
)
from voicebank.core.messages import format_rupees, get_prompt
from voicebank.core.pin_setup import PinSetupController

logger = logging.getLogger(__name__)
settings = get_settings()


class Stage(str, Enum):
    COLLECT_TARGET = "collect_target"
    COLLECT_AMOUNT = "collect_amount"
    CONFIRM = "confirm"
    ENROLL = "enroll"
    AUTHENTICATE = "authenticate"
    EXECUTE = "execute"
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STAGES = frozenset({Stage.SUCCESS, Stage.CANCELLED, Stage.FAILED})

ALLOWED_TRANSITIONS = {
    Stage.COLLECT_TARGET: {Stage.COLLECT_AMOUNT, Stage.CONFIRM, Stage.CANCELLED, Stage.FAILED},
    Stage.COLLECT_AMOUNT: {Stage.CONFIRM, Stage.CANCELLED, Stage.FAILED},
    Stage.CONFIRM: {Stage.AUTHENTICATE, Stage.ENROLL, Stage.CANCELLED, Stage.FAILED},
    Stage.ENROLL: {Stage.AUTHENTICATE, Stage.CONFIRM, Stage.CANCELLED, Stage.FAILED},
    Stage.AUTHENTICATE: {Stage.EXECUTE, Stage.CONFIRM, Stage.CANCELLED, Stage.FAILED},
    Stage.EXECUTE: {Stage.SUCCESS, Stage.FAILED},
    Stage.SUCCESS: set(),
    Stage.CANCELLED: set(),
    Stage.FAILED: set(),
}

# Stages in which the user is expected to speak digits
PIN_STAGES = (Stage.ENROLL, Stage.AUTHENTICATE)

# Recognizer errors that end the flow with their own prompt; other errors
# end it with service_error, except no_speech which re-prompts
RECOGNIZER_ERROR_PROMPTS = {
    "permission_denied": "mic_permission_denied",
    "unsupported": "mic_unsupported",
}


class FlowKind(str, Enum):
    TRANSFER = "transfer"
    BILL_PAYMENT = "bill_payment"


# =========================
# Events
# =========================

@dataclass(frozen=True)
class TranscriptReceived:
    text: str
    is_final: bool = True


@dataclass(frozen=True)
class TargetSelected:
    """On-screen pick of a contact (name or phone) or a bill category id."""
    value: str


@dataclass(frozen=True)
class CancelRequested:
    pass


@dataclass(frozen=True)
class AuthCancelRequested:
    pass


@dataclass(frozen=True)
class VoiceVerificationRequested:
    audio: Optional[AudioSource] = None


@dataclass(frozen=True)
class PinFallbackRequested:
    pass


@dataclass(frozen=True)
class EnrollmentCompleted:
    pass


@dataclass(frozen=True)
class RecognizerFailed:
    """Speech recognition stopped with an error (see map_recognizer_error)."""
    error_type: str
    detail: str = ""


# =========================
# Session state
# =========================

@dataclass
class ConversationEntry:
    speaker: str  # "user" or "assistant"
    text: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speaker": self.speaker,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class FlowSession:
    """Mutable state of one in-progress voice transaction."""
    session_id: str
    kind: FlowKind
    user_id: str
    language: str = "hi"

    stage: Stage = Stage.COLLECT_TARGET
    target: Any = None
    amount: Optional[int] = None
    auth_method: str = "none"
    attempts: int = 0
    conversation_log: List[ConversationEntry] = field(default_factory=list)

    last_transcript: Optional[str] = None
    partial_transcript: str = ""
    awaiting_pin_fallback: bool = False
    is_processing: bool = False
    failure_reason: Optional[str] = None
    transaction_id: Optional[str] = None
    idempotency_key: str = field(default_factory=lambda: str(uuid4()))

    created_at: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def transition(self, stage: Stage):
        """Move to another stage. Terminal stages are absorbing."""
        if stage not in ALLOWED_TRANSITIONS[self.stage]:
            raise FlowStateException(self.stage.value, stage.value)

        logger.info(f"Flow {self.session_id}: {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.last_activity = datetime.now()

    def add_entry(self, speaker: str, text: str):
        self.conversation_log.append(ConversationEntry(speaker=speaker, text=text))
        self.last_activity = datetime.now()

    def is_expired(self) -> bool:
        timeout = timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)
        return datetime.now() - self.last_activity > timeout

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "kind": self.kind.value,
            "user_id": self.user_id,
            "language": self.language,
            "stage": self.stage.value,
            "target": _target_to_dict(self.target),
            "amount": self.amount,
            "auth_method": self.auth_method,
            "attempts": self.attempts,
            "awaiting_pin_fallback": self.awaiting_pin_fallback,
            "is_processing": self.is_processing,
            "partial_transcript": self.partial_transcript,
            "failure_reason": self.failure_reason,
            "transaction_id": self.transaction_id,
            "conversation_log": [entry.to_dict() for entry in self.conversation_log],
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }


def _target_to_dict(target: Any) -> Optional[Dict[str, Any]]:
    if isinstance(target, RecipientMatch):
        return {
            "type": "recipient",
            "name": target.name,
            "phone": target.phone,
            "is_new_contact": target.is_new_contact,
        }
    if isinstance(target, BillCategory):
        return {
            "type": "bill",
            "id": target.id,
            "name": target.name,
            "name_hi": target.name_hi,
        }
    return None


@dataclass
class BankingContext:
    """Who the flow runs for and what it may offer them."""
    user_id: str
    language: str = "hi"
    contacts: List[Contact] = field(default_factory=list)
    bill_dues: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def with_defaults(cls, user_id: str, language: str = "hi") -> "BankingContext":
        contacts = [Contact(c["name"], c["phone"]) for c in DEFAULT_CONTACTS]
        return cls(user_id=user_id, language=language, contacts=contacts)

    def bill_amount(self, category_id: str) -> int:
        return self.bill_dues.get(category_id, settings.DEFAULT_BILL_AMOUNT)


@dataclass
class FlowServices:
    """Collaborators a flow talks to."""
    banking: Any
    security: Any
    biometrics: Any
    speech: SpeechOutput
    listener: Optional[SpeechInput] = None
    audio: Optional[AudioSource] = None
    agent_logger: Any = None


# =========================
# Controller
# =========================

class FlowController:
    """
    Runs one FlowSession.

    Usage:
        controller = FlowController(FlowKind.TRANSFER, context, services)
        await controller.start()
        await controller.dispatch(TranscriptReceived("राम कुमार को 500 भेजो"))
    """

    def __init__(
        self,
        kind: FlowKind,
        context: BankingContext,
        services: FlowServices,
        session_id: Optional[str] = None
    ):
        self.context = context
        self.services = services
        self.session = FlowSession(
            session_id=session_id or str(uuid4()),
            kind=kind,
            user_id=context.user_id,
            language=context.language,
        )
        self.executor = TransactionExecutor(services.banking)
        self.gate: Optional[AuthenticationGate] = None
        self.pin_setup: Optional[PinSetupController] = None

        self._queue: asyncio.Queue = asyncio.Queue()
        self._interpretation = InterpretationContext(
            flow_kind=kind.value,
            contacts=context.contacts,
        )

    @property
    def is_transfer(self) -> bool:
        return self.session.kind == FlowKind.TRANSFER

    async def start(self) -> FlowSession:
        """Load the account and ask for the target."""
        await self._audit("log_session_start", language=self.session.language)
        await self._audit("log_flow_started", kind=self.session.kind.value, user_id=self.context.user_id)

        try:
            await self.services.banking.get_account(self.context.user_id)
        except LedgerException as e:
            logger.error(f"Could not load account for {self.context.user_id}: {e.message}")
            await self._fail(e.reason, "service_error", detail=e.message)
            return self.session

        await self._say("ask_recipient" if self.is_transfer else "ask_bill")
        return self.session

    async def dispatch(self, event: Any) -> FlowSession:
        """
        Queue an event and, unless a drain is already running, process the
        queue until it is empty.
        """
        if isinstance(event, CancelRequested) and self.session.is_processing:
            await self._handle_event(event)
            return self.session

        await self._queue.put(event)
        if self.session.is_processing:
            return self.session

        self.session.is_processing = True
        try:
            while not self._queue.empty():
                await self._handle_event(self._queue.get_nowait())
        finally:
            self.session.is_processing = False
        return self.session

    def to_dict(self) -> Dict[str, Any]:
        data = self.session.to_dict()
        data["auth"] = self.gate.to_dict() if self.gate else None
        data["pin_setup"] = self.pin_setup.to_dict() if self.pin_setup else None
        return data

    # =========================
    # Event handling
    # =========================

    async def _handle_event(self, event: Any):
        if self.session.is_terminal:
            logger.debug(f"Flow {self.session.session_id} is {self.session.stage.value}; ignoring {event}")
            return

        try:
            if isinstance(event, TranscriptReceived):
                await self._on_transcript(event)
            elif isinstance(event, TargetSelected):
                await self._on_target_selected(event.value)
            elif isinstance(event, CancelRequested):
                await self._on_cancel()
            elif isinstance(event, AuthCancelRequested):
                await self._on_auth_cancel()
            elif isinstance(event, VoiceVerificationRequested):
                await self._on_voice_verification(event.audio)
            elif isinstance(event, PinFallbackRequested):
                await self._on_pin_fallback()
            elif isinstance(event, EnrollmentCompleted):
                await self._on_enrollment_completed()
            elif isinstance(event, RecognizerFailed):
                await self._on_recognizer_failed(event.error_type, event.detail)
            else:
                logger.warning(f"Unknown flow event: {event!r}")
        except Exception as e:
            logger.exception(f"Flow {self.session.session_id} failed in {self.session.stage.value}: {e}")
            await self._audit("log_error", error_type=type(e).__name__, error_message=str(e))
            await self._fail("unexpected_error", "generic_error")

    async def _on_transcript(self, event: TranscriptReceived):
        if not event.is_final:
            self.session.partial_transcript = event.text
            return

        text = event.text.strip()
        if not text or text == self.session.last_transcript:
            return

        self.session.last_transcript = text
        self.session.partial_transcript = ""
        await self._record_user(text)

        stage = self.session.stage
        if stage == Stage.COLLECT_TARGET:
            await self._collect_target(text)
        elif stage == Stage.COLLECT_AMOUNT:
            await self._collect_amount(text)
        elif stage == Stage.CONFIRM:
            await self._confirm(text)
        elif stage == Stage.ENROLL:
            await self._enroll(text)
        elif stage == Stage.AUTHENTICATE:
            await self._authenticate(text)

    async def _collect_target(self, text: str):
        target = interpret(text, Stage.COLLECT_TARGET, self._interpretation)
        if target is AMBIGUOUS:
            await self._say("ask_recipient" if self.is_transfer else "bill_unclear")
            return

        amount = None
        if isinstance(target, RecipientMatch) and not target.is_new_contact:
            # "राम कुमार को पांच सौ रुपये भेजो" names the amount too
            amount = extract_amount(text.replace(target.matched_text or "", " "))

        await self._set_target(target, amount)

    async def _on_target_selected(self, value: str):
        if self.session.stage != Stage.COLLECT_TARGET:
            logger.info(f"Ignoring target selection in {self.session.stage.value}")
            return

        if self.is_transfer:
            target = match_recipient(value, self.context.contacts)
        else:
            target = find_bill_category(value)

        if target is None:
            await self._say("ask_recipient" if self.is_transfer else "bill_unclear")
            return

        await self._record_user(value)
        await self._set_target(target)

    async def _set_target(self, target: Any, amount: Optional[int] = None):
        self.session.target = target

        if isinstance(target, BillCategory):
            self.session.amount = self.context.bill_amount(target.id)
            await self._enter_confirm()
            return

        if amount:
            self.session.amount = amount
            await self._enter_confirm()
            return

        self.session.transition(Stage.COLLECT_AMOUNT)
        if target.is_new_contact:
            await self._say("ask_amount_new", name=target.name)
        else:
            await self._say("ask_amount_contact", name=target.name, phone=target.phone)

    async def _collect_amount(self, text: str):
        amount = interpret(text, Stage.COLLECT_AMOUNT, self._interpretation)
        if amount is AMBIGUOUS:
            await self._say("amount_unclear")
            return

        self.session.amount = amount
        await self._enter_confirm()

    async def _enter_confirm(self):
        self.session.transition(Stage.CONFIRM)
        await self._prompt_confirm()

    async def _prompt_confirm(self):
        amount = format_rupees(self.session.amount)
        if self.is_transfer:
            await self._say("confirm_transfer", name=self.session.target.name, amount=amount)
        else:
            await self._say("confirm_bill", bill=self._bill_name(), amount=amount)

    async def _confirm(self, text: str):
        answer = interpret(text, Stage.CONFIRM, self._interpretation)
        if answer is AMBIGUOUS:
            await self._say("confirm_unclear")
            return

        if answer is False:
            await self._cancel_flow()
            return

        try:
            balance = await self.services.banking.get_balance(self.context.user_id)
        except LedgerException as e:
            logger.error(f"Could not read balance for {self.context.user_id}: {e.message}")
            await self._fail(e.reason, "service_error", detail=e.message)
            return
        if self.session.is_terminal:
            return

        if self.session.amount > balance:
            logger.info(
                f"Flow {self.session.session_id}: amount {self.session.amount} exceeds balance {balance}"
            )
            self.session.last_transcript = None
            await self._say("insufficient_funds")
            return

        await self._begin_authentication()

    # =========================
    # Authentication
    # =========================

    async def _begin_authentication(self):
        if self.gate is None:
            self.gate = AuthenticationGate(
                user_id=self.context.user_id,
                security=self.services.security,
                biometrics=self.services.biometrics,
                audio=self.services.audio,
            )

        # A gate kept across an auth-cancel keeps its method and its count
        if self.gate.method in (AuthMethod.NONE, AuthMethod.ENROLL):
            await self.gate.select_method()
            if self.session.is_terminal:
                return

        if self.gate.method == AuthMethod.ENROLL:
            self.session.transition(Stage.ENROLL)
            self.pin_setup = PinSetupController(
                self.context.user_id,
                self.services.security,
                language=self.session.language,
            )
            result = self.pin_setup.start("enroll_required")
            await self._speak(result.message)
            return

        self.session.transition(Stage.AUTHENTICATE)
        self._sync_auth_state()

        if self.gate.exhausted:
            await self._handle_exhausted()
        elif self.gate.method == AuthMethod.VOICE:
            await self._say("auth_voice")
        else:
            await self._say("auth_pin")

    async def _enroll(self, text: str):
        result = await self.pin_setup.handle_transcript(text)
        # The confirmation repeats the first entry word for word
        self.session.last_transcript = None
        if result is None or self.session.is_terminal:
            return

        await self._speak(result.message)
        if result.completed:
            await self._on_enrollment_completed()

    async def _on_enrollment_completed(self):
        if self.session.stage != Stage.ENROLL:
            logger.info(f"Ignoring enrollment completion in {self.session.stage.value}")
            return

        method = await self.gate.select_method()
        if self.session.is_terminal:
            return

        if method == AuthMethod.ENROLL:
            await self._say("enroll_required")
            return

        self.pin_setup = None
        self.session.transition(Stage.AUTHENTICATE)
        self._sync_auth_state()
        await self._say("auth_voice" if method == AuthMethod.VOICE else "auth_pin")

    async def _authenticate(self, text: str):
        if self.session.awaiting_pin_fallback:
            answer = classify_confirmation(text)
            if answer is None:
                await self._say("confirm_unclear")
            elif answer:
                await self._on_pin_fallback()
            else:
                await self._fail("auth_exhausted", "auth_exhausted")
            return

        if self.gate.method == AuthMethod.VOICE:
            await self._say("auth_voice_hint")
            return

        attempt = await self.gate.attempt_pin(text)
        await self._handle_attempt(attempt)

    async def _on_voice_verification(self, audio: Optional[AudioSource]):
        if (
            self.session.stage != Stage.AUTHENTICATE
            or self.gate.method != AuthMethod.VOICE
            or self.session.awaiting_pin_fallback
        ):
            logger.info(f"Ignoring voice verification request in {self.session.stage.value}")
            return

        await self._say("auth_voice_listening")
        attempt = await self.gate.attempt_voice(audio)
        await self._handle_attempt(attempt)

    async def _handle_attempt(self, attempt: AuthAttempt):
        if self.session.is_terminal:
            return

        self._sync_auth_state()
        await self._audit(
            "log_auth_attempt",
            method=attempt.method.value,
            outcome=attempt.outcome.value,
            attempts_label=attempt.attempts_label,
            score=attempt.score,
        )

        is_pin = attempt.method == AuthMethod.PIN
        if attempt.outcome == AuthOutcome.ACCEPTED:
            await self._say("auth_pin_success" if is_pin else "auth_voice_success")
            await self._execute()
        elif attempt.outcome == AuthOutcome.UNCLEAR:
            await self._say("auth_pin_unclear")
        elif attempt.outcome == AuthOutcome.REJECTED:
            # The same words again are a new attempt, not a duplicate
            self.session.last_transcript = None
            await self._say(
                "auth_pin_rejected" if is_pin else "auth_voice_rejected",
                attempts=attempt.attempts_label,
            )
        else:
            await self._handle_exhausted()

    async def _handle_exhausted(self):
        if self.gate.can_fallback_to_pin:
            self.session.awaiting_pin_fallback = True
            self.session.last_transcript = None
            await self._say("auth_voice_exhausted_offer_pin")
        else:
            await self._fail("auth_exhausted", "auth_exhausted")

    async def _on_pin_fallback(self):
        if self.session.stage != Stage.AUTHENTICATE or not self.gate.fallback_to_pin():
            logger.info(f"PIN fallback not available for flow {self.session.session_id}")
            return

        self.session.awaiting_pin_fallback = False
        self.session.last_transcript = None
        self._sync_auth_state()
        await self._say("auth_pin")

    async def _on_auth_cancel(self):
        if self.session.stage not in (Stage.AUTHENTICATE, Stage.ENROLL):
            logger.info(f"Ignoring auth cancel in {self.session.stage.value}")
            return

        self.services.speech.stop()
        self.pin_setup = None
        self.session.awaiting_pin_fallback = False
        self.session.transition(Stage.CONFIRM)
        self.session.last_transcript = None
        await self._say("auth_cancelled")

    def _sync_auth_state(self):
        self.session.auth_method = self.gate.method.value if self.gate.method in (
            AuthMethod.VOICE, AuthMethod.PIN
        ) else "none"
        self.session.attempts = self.gate.attempts

    # =========================
    # Execution and endings
    # =========================

    async def _execute(self):
        self.gate.consume()
        self.session.transition(Stage.EXECUTE)

        target = self.session.target
        if self.is_transfer:
            tx_type = "debit"
            description = f"Sent to {target.name}"
        else:
            tx_type = "bill"
            description = f"{target.name} bill payment"

        result = await self.executor.execute(
            self.context.user_id,
            tx_type,
            self.session.amount,
            description,
            target=target,
            idempotency_key=self.session.idempotency_key,
        )
        await self._audit(
            "log_transaction",
            tx_type=tx_type,
            amount=self.session.amount,
            status=result.status.value,
            reason=result.reason,
        )

        amount = format_rupees(self.session.amount)
        if result.submitted:
            self.session.transaction_id = getattr(result.transaction, "id", None)
            self.session.transition(Stage.SUCCESS)
            if self.is_transfer:
                await self._say("transfer_success", name=target.name, amount=amount)
            else:
                await self._say("bill_success", bill=self._bill_name(), amount=amount)
            return

        self.session.failure_reason = result.reason
        self.session.transition(Stage.FAILED)
        if result.reason == "insufficient_funds":
            await self._say("insufficient_funds")
        else:
            await self._say("transfer_failed" if self.is_transfer else "bill_failed")

    async def _on_cancel(self):
        if self.session.stage == Stage.EXECUTE:
            await self._say("cannot_cancel")
            return

        self.services.speech.stop()
        if self.services.listener is not None:
            self.services.listener.stop_listening()
        await self._cancel_flow()

    async def _on_recognizer_failed(self, error_type: str, detail: str):
        await self._audit("log_error", error_type=f"stt_{error_type}", error_message=detail or error_type)

        if self.session.stage == Stage.EXECUTE:
            logger.warning(f"Recognizer error {error_type} while executing {self.session.session_id}")
            return

        if error_type == "no_speech":
            self.session.last_transcript = None
            await self._say("no_speech")
            return

        key = RECOGNIZER_ERROR_PROMPTS.get(error_type)
        if key is not None:
            await self._fail(error_type, key)
        else:
            await self._fail(error_type, "service_error", detail=detail or error_type)

    async def _cancel_flow(self):
        self.session.awaiting_pin_fallback = False
        self.pin_setup = None
        self.session.transition(Stage.CANCELLED)
        await self._say("transfer_cancelled" if self.is_transfer else "bill_cancelled")

    async def _fail(self, reason: str, prompt_key: str, **values):
        if self.session.is_terminal:
            return

        self.session.failure_reason = reason
        self.session.awaiting_pin_fallback = False
        self.session.transition(Stage.FAILED)
        await self._say(prompt_key, **values)

    # =========================
    # Output
    # =========================

    async def _say(self, key: str, **values):
        await self._speak(get_prompt(key, self.session.language, **values))

    async def _speak(self, message: str):
        self.session.add_entry("assistant", message)
        self.services.speech.speak(message, self.session.language)
        await self._audit("log_assistant_prompt", text=message, stage=self.session.stage.value)

    async def _record_user(self, text: str):
        if self._expects_pin():
            text = "•" * len(text.replace(" ", ""))
        self.session.add_entry("user", text)
        await self._audit("log_user_utterance", text=text, stage=self.session.stage.value)

    def _expects_pin(self) -> bool:
        if self.session.stage == Stage.ENROLL:
            return True
        return (
            self.session.stage == Stage.AUTHENTICATE
            and not self.session.awaiting_pin_fallback
            and self.gate is not None
            and self.gate.method == AuthMethod.PIN
        )

    def _bill_name(self) -> str:
        category = self.session.target
        return category.name_hi if self.session.language == "hi" else category.name

    async def _audit(self, method: str, /, **kwargs):
        agent_logger = self.services.agent_logger
        if agent_logger is None:
            return
        await getattr(agent_logger, method)(self.session.session_id, **kwargs)
