"""End-to-end tests for the send-money and bill-payment flows."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from voicebank.core.exceptions import FlowStateException, LedgerUnavailableException
from voicebank.core.flow import (
    AuthCancelRequested,
    CancelRequested,
    EnrollmentCompleted,
    FlowKind,
    PinFallbackRequested,
    RecognizerFailed,
    Stage,
    TargetSelected,
    TranscriptReceived,
    VoiceVerificationRequested,
)
from voicebank.core.messages import get_prompt
from voicebank.services.security import hash_pin

from tests.conftest import USER_ID, FakeListener


async def say(controller, *texts):
    for text in texts:
        await controller.dispatch(TranscriptReceived(text))
    return controller.session


class TestTransfer:
    async def test_contact_and_amount_in_one_utterance(self, make_flow, speech, ledger):
        flow = await make_flow()
        assert speech.last == get_prompt("ask_recipient")

        session = await say(flow, "राम कुमार को पांच सौ रुपये भेजो")
        assert session.stage == Stage.CONFIRM
        assert session.target.name == "राम कुमार"
        assert session.amount == 500
        assert speech.last == get_prompt("confirm_transfer", name="राम कुमार", amount="500")

        session = await say(flow, "हाँ")
        assert session.stage == Stage.AUTHENTICATE
        assert session.auth_method == "pin"

        session = await say(flow, "1 2 3 4")
        assert session.stage == Stage.SUCCESS
        assert ledger.accounts[USER_ID].balance == 9500
        assert speech.last == get_prompt("transfer_success", name="राम कुमार", amount="500")

        tx = ledger.transactions[0]
        assert tx.type == "debit"
        assert tx.recipient_phone == "9876543210"
        assert tx.idempotency_key == session.idempotency_key
        assert session.transaction_id == tx.id

    async def test_contact_then_amount(self, make_flow, speech):
        flow = await make_flow()
        session = await say(flow, "सीता देवी")
        assert session.stage == Stage.COLLECT_AMOUNT
        assert speech.last == get_prompt("ask_amount_contact", name="सीता देवी", phone="9876543211")

        session = await say(flow, "दो हजार")
        assert session.stage == Stage.CONFIRM
        assert session.amount == 2000

    async def test_new_contact_sent_without_phone(self, make_flow, speech, ledger):
        flow = await make_flow()
        session = await say(flow, "गीता शर्मा")
        assert session.target.is_new_contact
        assert speech.last == get_prompt("ask_amount_new", name="गीता शर्मा")

        await say(flow, "300", "हाँ", "1234")
        assert flow.session.stage == Stage.SUCCESS
        assert ledger.transactions[0].recipient_name == "गीता शर्मा"
        assert not hasattr(ledger.transactions[0], "recipient_phone")

    async def test_on_screen_selection(self, make_flow):
        flow = await make_flow()
        session = await flow.dispatch(TargetSelected("9876543212"))
        assert session.stage == Stage.COLLECT_AMOUNT
        assert session.target.name == "मोहन लाल"

    async def test_unclear_amount_reprompts(self, make_flow, speech):
        flow = await make_flow()
        session = await say(flow, "राम कुमार", "पता नहीं")
        assert session.stage == Stage.COLLECT_AMOUNT
        assert speech.last == get_prompt("amount_unclear")

    async def test_refusal_cancels(self, make_flow, speech, ledger):
        flow = await make_flow()
        session = await say(flow, "राम कुमार को 500", "नहीं भेजो")
        assert session.stage == Stage.CANCELLED
        assert speech.last == get_prompt("transfer_cancelled")
        assert ledger.submissions == 0

    async def test_english_prompts(self, make_flow, speech):
        flow = await make_flow(language="en")
        await say(flow, "राम कुमार को 500")
        assert speech.last == "Say 'yes' to send ₹500 to राम कुमार."


class TestTranscripts:
    async def test_partial_does_not_advance(self, make_flow):
        flow = await make_flow()
        session = await flow.dispatch(TranscriptReceived("राम", is_final=False))
        assert session.stage == Stage.COLLECT_TARGET
        assert session.partial_transcript == "राम"

    async def test_duplicate_final_ignored(self, make_flow, speech):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500")
        spoken = len(speech.spoken)

        session = await say(flow, "राम कुमार को 500")
        assert session.stage == Stage.CONFIRM
        assert len(speech.spoken) == spoken

    async def test_pin_masked_in_log_and_audit(self, make_flow):
        audit = AsyncMock()
        flow = await make_flow(agent_logger=audit)
        await say(flow, "राम कुमार को 500", "हाँ", "1 2 3 4")

        user_texts = [e.text for e in flow.session.conversation_log if e.speaker == "user"]
        assert user_texts[-1] == "••••"
        assert "1234" not in " ".join(user_texts)

        logged = [c.kwargs["text"] for c in audit.log_user_utterance.call_args_list]
        assert logged[-1] == "••••"
        audit.log_transaction.assert_awaited_once()


class TestBillPayment:
    async def test_bill_paid(self, make_flow, speech, ledger):
        flow = await make_flow(kind=FlowKind.BILL_PAYMENT, bill_dues={"electricity": 850})
        assert speech.last == get_prompt("ask_bill")

        session = await say(flow, "बिजली का बिल")
        assert session.stage == Stage.CONFIRM
        assert session.amount == 850

        await say(flow, "हाँ", "1234")
        assert flow.session.stage == Stage.SUCCESS
        assert ledger.transactions[0].type == "bill"
        assert ledger.transactions[0].bill_type == "electricity"
        assert speech.last == get_prompt("bill_success", bill="बिजली", amount="850")

    async def test_insufficient_balance_stays_in_confirm(self, make_flow, speech, ledger):
        flow = await make_flow(kind=FlowKind.BILL_PAYMENT, balance=1000)
        session = await say(flow, "बिजली")
        assert session.amount == 1250

        session = await say(flow, "हाँ")
        assert session.stage == Stage.CONFIRM
        assert speech.last == get_prompt("insufficient_funds")
        assert flow.gate is None
        assert ledger.submissions == 0

    async def test_unknown_bill_reprompts(self, make_flow, speech):
        flow = await make_flow(kind=FlowKind.BILL_PAYMENT)
        session = await say(flow, "कुछ और")
        assert session.stage == Stage.COLLECT_TARGET
        assert speech.last == get_prompt("bill_unclear")

    async def test_selection_by_category_id(self, make_flow):
        flow = await make_flow(kind=FlowKind.BILL_PAYMENT)
        session = await flow.dispatch(TargetSelected("water"))
        assert session.stage == Stage.CONFIRM
        assert session.target.id == "water"


class TestPinAuthentication:
    async def test_three_wrong_pins_fail(self, make_flow, speech, ledger):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500", "हाँ", "9999")
        assert speech.last == get_prompt("auth_pin_rejected", attempts="Attempts: 1/3")

        session = await say(flow, "9999", "9999")
        assert session.stage == Stage.FAILED
        assert session.failure_reason == "auth_exhausted"
        assert session.attempts == 3
        assert speech.last == get_prompt("auth_exhausted")
        assert ledger.submissions == 0

    async def test_unclear_pin_spends_no_attempt(self, make_flow, speech):
        flow = await make_flow()
        session = await say(flow, "राम कुमार को 500", "हाँ", "एक दो")
        assert session.attempts == 0
        assert speech.last == get_prompt("auth_pin_unclear")

    async def test_auth_cancel_keeps_attempt_count(self, make_flow, speech):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500", "हाँ", "9999")

        session = await flow.dispatch(AuthCancelRequested())
        assert session.stage == Stage.CONFIRM
        assert speech.last == get_prompt("auth_cancelled")

        session = await say(flow, "हाँ")
        assert session.stage == Stage.AUTHENTICATE
        assert session.attempts == 1


class TestVoiceAuthentication:
    async def test_accepts_on_third_attempt(self, make_flow, speech, ledger):
        flow = await make_flow(scores=[0.65, 0.65, 0.85])
        session = await say(flow, "राम कुमार को 500", "हाँ")
        assert session.auth_method == "voice"
        assert speech.last == get_prompt("auth_voice")

        await flow.dispatch(VoiceVerificationRequested())
        assert speech.last == get_prompt("auth_voice_rejected", attempts="Attempts: 1/3")
        await flow.dispatch(VoiceVerificationRequested())
        session = await flow.dispatch(VoiceVerificationRequested())

        assert session.stage == Stage.SUCCESS
        assert not flow.gate.exhausted
        assert ledger.submissions == 1

    async def test_spoken_words_do_not_count_as_voice_attempt(self, make_flow, speech):
        flow = await make_flow(scores=[0.9])
        session = await say(flow, "राम कुमार को 500", "हाँ", "1234")
        assert session.stage == Stage.AUTHENTICATE
        assert session.attempts == 0
        assert speech.last == get_prompt("auth_voice_hint")

    async def test_exhausted_voice_offers_pin_once(self, make_flow, speech):
        flow = await make_flow(scores=[0.1, 0.1, 0.1])
        await say(flow, "राम कुमार को 500", "हाँ")
        for _ in range(3):
            await flow.dispatch(VoiceVerificationRequested())

        assert flow.session.awaiting_pin_fallback
        assert speech.last == get_prompt("auth_voice_exhausted_offer_pin")

        session = await say(flow, "हाँ")
        assert session.auth_method == "pin"
        assert session.attempts == 0
        assert speech.last == get_prompt("auth_pin")

        session = await say(flow, "1234")
        assert session.stage == Stage.SUCCESS

    async def test_declined_fallback_fails(self, make_flow):
        flow = await make_flow(scores=[0.1, 0.1, 0.1])
        await say(flow, "राम कुमार को 500", "हाँ")
        for _ in range(3):
            await flow.dispatch(VoiceVerificationRequested())

        session = await say(flow, "नहीं")
        assert session.stage == Stage.FAILED
        assert session.failure_reason == "auth_exhausted"

    async def test_fallback_event(self, make_flow):
        flow = await make_flow(scores=[0.1, 0.1, 0.1])
        await say(flow, "राम कुमार को 500", "हाँ")
        for _ in range(3):
            await flow.dispatch(VoiceVerificationRequested())

        session = await flow.dispatch(PinFallbackRequested())
        assert session.auth_method == "pin"
        assert not session.awaiting_pin_fallback

    async def test_exhausted_without_pin_fails(self, make_flow):
        flow = await make_flow(pin=None, scores=[0.1, 0.1, 0.1])
        await say(flow, "राम कुमार को 500", "हाँ")
        for _ in range(3):
            await flow.dispatch(VoiceVerificationRequested())
        assert flow.session.stage == Stage.FAILED


class TestEnrollment:
    async def test_pin_mismatch_not_persisted(self, make_flow, speech, store, ledger):
        flow = await make_flow(pin=None)
        session = await say(flow, "राम कुमार को 500", "हाँ")
        assert session.stage == Stage.ENROLL
        assert speech.last == get_prompt("enroll_required")

        await say(flow, "1234")
        assert speech.last == get_prompt("pin_setup_confirm", digits="1 2 3 4")

        session = await say(flow, "5678")
        assert speech.last == get_prompt("pin_setup_mismatch")
        assert session.stage == Stage.ENROLL
        assert USER_ID not in store.pin_hashes

        session = await say(flow, "1234", "1234")
        assert store.pin_hashes[USER_ID] == hash_pin("1234")
        assert session.stage == Stage.AUTHENTICATE
        assert speech.last == get_prompt("auth_pin")

        session = await say(flow, "1234")
        assert session.stage == Stage.SUCCESS
        assert ledger.submissions == 1

    async def test_enrolled_elsewhere(self, make_flow, store):
        flow = await make_flow(pin=None)
        await say(flow, "राम कुमार को 500", "हाँ")

        store.pin_hashes[USER_ID] = hash_pin("4321")
        session = await flow.dispatch(EnrollmentCompleted())
        assert session.stage == Stage.AUTHENTICATE
        assert flow.pin_setup is None


class TestCancellation:
    async def test_cancel_stops_speech_and_listening(self, make_flow, speech):
        listener = FakeListener()
        flow = await make_flow(listener=listener)
        session = await flow.dispatch(CancelRequested())

        assert session.stage == Stage.CANCELLED
        assert speech.stops == 1
        assert listener.stopped

    async def test_terminal_stages_absorb_events(self, make_flow, speech):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500", "हाँ", "1234")
        spoken = len(speech.spoken)

        session = await flow.dispatch(CancelRequested())
        session = await say(flow, "सीता देवी")
        assert session.stage == Stage.SUCCESS
        assert len(speech.spoken) == spoken

        with pytest.raises(FlowStateException):
            session.transition(Stage.CONFIRM)

    async def test_cancel_refused_while_executing(self, make_flow, speech, ledger):
        release = asyncio.Event()
        submit = ledger.submit_transaction

        async def slow_submit(user_id, record):
            await release.wait()
            return await submit(user_id, record)

        ledger.submit_transaction = slow_submit
        flow = await make_flow()
        await say(flow, "राम कुमार को 500", "हाँ")

        task = asyncio.create_task(say(flow, "1234"))
        while flow.session.stage != Stage.EXECUTE:
            await asyncio.sleep(0)

        session = await flow.dispatch(CancelRequested())
        assert session.stage == Stage.EXECUTE
        assert speech.last == get_prompt("cannot_cancel")

        release.set()
        await task
        assert flow.session.stage == Stage.SUCCESS
        assert ledger.submissions == 1


class TestFailures:
    async def test_missing_account_fails_at_start(self, make_flow, ledger, speech):
        del ledger.accounts[USER_ID]
        flow = await make_flow()
        assert flow.session.stage == Stage.FAILED
        assert flow.session.failure_reason == "account_not_found"
        assert speech.last == get_prompt("service_error", detail=f"No account found for user '{USER_ID}'")

    async def test_ledger_error_at_execution(self, make_flow, speech, ledger):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500", "हाँ")
        ledger.fail_submit = LedgerUnavailableException("timeout")

        session = await say(flow, "1234")
        assert session.stage == Stage.FAILED
        assert session.failure_reason == "ledger_unavailable"
        assert speech.last == get_prompt("transfer_failed")

    async def test_balance_drop_before_execution(self, make_flow, speech, ledger):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500", "हाँ")
        ledger.accounts[USER_ID].balance = 100

        session = await say(flow, "1234")
        assert session.stage == Stage.FAILED
        assert session.failure_reason == "insufficient_funds"
        assert speech.last == get_prompt("insufficient_funds")

    async def test_ledger_error_at_confirmation(self, make_flow, speech, ledger, banking):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500")
        banking.invalidate(USER_ID)
        ledger.fail_reads = True

        session = await say(flow, "हाँ")
        assert session.stage == Stage.FAILED
        assert session.failure_reason == "ledger_unavailable"
        assert speech.last == get_prompt("service_error", detail="Ledger unavailable: connection refused")
        assert session.conversation_log[-1].text == speech.last

    async def test_unexpected_error_fails_with_generic_message(self, make_flow, speech, banking):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500")
        banking.get_balance = AsyncMock(side_effect=RuntimeError("boom"))

        session = await say(flow, "हाँ")
        assert session.stage == Stage.FAILED
        assert session.failure_reason == "unexpected_error"
        assert speech.last == get_prompt("generic_error")


class TestRecognizerErrors:
    async def test_permission_denied_fails_flow(self, make_flow, speech):
        flow = await make_flow()

        session = await flow.dispatch(RecognizerFailed("permission_denied"))
        assert session.stage == Stage.FAILED
        assert session.failure_reason == "permission_denied"
        assert speech.last == get_prompt("mic_permission_denied")
        assert session.conversation_log[-1].text == get_prompt("mic_permission_denied")

    async def test_network_error_is_a_service_failure(self, make_flow, speech):
        flow = await make_flow(language="en")

        session = await flow.dispatch(RecognizerFailed("network", "Speech recognition network error: network"))
        assert session.stage == Stage.FAILED
        assert session.failure_reason == "network"
        assert speech.last == get_prompt(
            "service_error", "en", detail="Speech recognition network error: network"
        )

    async def test_no_speech_reprompts(self, make_flow, speech):
        flow = await make_flow()
        await say(flow, "राम कुमार को 500")

        session = await flow.dispatch(RecognizerFailed("no_speech"))
        assert session.stage == Stage.CONFIRM
        assert speech.last == get_prompt("no_speech")

        session = await say(flow, "हाँ")
        assert session.stage == Stage.AUTHENTICATE
