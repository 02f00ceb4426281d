"""Tests for the authentication gate."""

import pytest

from voicebank.core.auth_gate import AuthenticationGate, AuthMethod, AuthOutcome
from voicebank.core.exceptions import AuthenticationException, GateConsumedException
from voicebank.services.security import hash_pin

from tests.conftest import USER_ID, ScriptedBiometrics


def make_gate(security, scores=None, available=None):
    biometrics = ScriptedBiometrics(
        scores, available=scores is not None if available is None else available
    )
    return AuthenticationGate(USER_ID, security, biometrics), biometrics


class TestSelectMethod:
    async def test_voice_when_enrolled_and_available(self, security, store):
        store.pin_hashes[USER_ID] = hash_pin("1234")
        store.voice_profiles[USER_ID] = b"profile"
        gate, _ = make_gate(security, scores=[])
        assert await gate.select_method() == AuthMethod.VOICE

    async def test_pin_when_verifier_unavailable(self, security, store):
        store.pin_hashes[USER_ID] = hash_pin("1234")
        store.voice_profiles[USER_ID] = b"profile"
        gate, _ = make_gate(security, available=False)
        assert await gate.select_method() == AuthMethod.PIN

    async def test_enroll_without_credentials(self, security):
        gate, _ = make_gate(security)
        assert await gate.select_method() == AuthMethod.ENROLL


class TestPinAttempts:
    @pytest.fixture
    async def gate(self, security, store):
        store.pin_hashes[USER_ID] = hash_pin("1234")
        gate, _ = make_gate(security)
        await gate.select_method()
        return gate

    async def test_correct_pin(self, gate):
        attempt = await gate.attempt_pin("एक दो तीन चार")
        assert attempt.accepted
        assert attempt.attempts_label == "Attempts: 0/3"

    async def test_wrong_pin_counts(self, gate):
        attempt = await gate.attempt_pin("9999")
        assert attempt.outcome == AuthOutcome.REJECTED
        assert attempt.attempts_label == "Attempts: 1/3"

    async def test_unclear_pin_spends_nothing(self, gate):
        attempt = await gate.attempt_pin("एक दो")
        assert attempt.outcome == AuthOutcome.UNCLEAR
        assert gate.attempts == 0

    async def test_never_a_fourth_attempt(self, gate, store):
        outcomes = [(await gate.attempt_pin("9999")).outcome for _ in range(3)]
        assert outcomes == [AuthOutcome.REJECTED, AuthOutcome.REJECTED, AuthOutcome.EXHAUSTED]

        reads = store.pin_reads
        attempt = await gate.attempt_pin("1234")
        assert attempt.outcome == AuthOutcome.EXHAUSTED
        assert attempt.attempts == 3
        assert store.pin_reads == reads

    async def test_authenticate_dispatches_on_method(self, gate):
        attempt = await gate.authenticate(transcript="1234")
        assert attempt.method == AuthMethod.PIN
        assert attempt.accepted


class TestVoiceAttempts:
    async def test_accepts_on_third_attempt(self, security, store):
        store.voice_profiles[USER_ID] = b"profile"
        gate, biometrics = make_gate(security, scores=[0.65, 0.65, 0.85])
        await gate.select_method()

        first = await gate.attempt_voice()
        second = await gate.attempt_voice()
        third = await gate.attempt_voice()

        assert [first.outcome, second.outcome] == [AuthOutcome.REJECTED, AuthOutcome.REJECTED]
        assert third.accepted
        assert third.score == 0.85
        assert not gate.exhausted
        assert biometrics.calls == 3

    async def test_exhausted_does_not_call_verifier(self, security, store):
        store.voice_profiles[USER_ID] = b"profile"
        gate, biometrics = make_gate(security, scores=[0.1, 0.2, 0.3, 0.99])
        await gate.select_method()

        for _ in range(3):
            await gate.attempt_voice()
        attempt = await gate.attempt_voice()

        assert attempt.outcome == AuthOutcome.EXHAUSTED
        assert biometrics.calls == 3

    async def test_verifier_error_counts_as_reject(self, security, store):
        store.voice_profiles[USER_ID] = b"profile"
        gate, _ = make_gate(security, scores=[RuntimeError("engine crashed")])
        await gate.select_method()

        attempt = await gate.attempt_voice()
        assert attempt.outcome == AuthOutcome.REJECTED
        assert attempt.error == "engine crashed"
        assert gate.attempts == 1

    async def test_fallback_to_pin_once(self, security, store):
        store.pin_hashes[USER_ID] = hash_pin("1234")
        store.voice_profiles[USER_ID] = b"profile"
        gate, _ = make_gate(security, scores=[0.1, 0.1, 0.1])
        await gate.select_method()

        assert gate.fallback_to_pin() is False
        for _ in range(3):
            await gate.attempt_voice()

        assert gate.can_fallback_to_pin
        assert gate.fallback_to_pin() is True
        assert gate.method == AuthMethod.PIN
        assert gate.attempts == 0
        assert gate.fallback_to_pin() is False

    async def test_no_fallback_without_pin(self, security, store):
        store.voice_profiles[USER_ID] = b"profile"
        gate, _ = make_gate(security, scores=[0.1, 0.1, 0.1])
        await gate.select_method()
        for _ in range(3):
            await gate.attempt_voice()
        assert not gate.can_fallback_to_pin


class TestConsume:
    async def test_single_use(self, security, store):
        store.pin_hashes[USER_ID] = hash_pin("1234")
        gate, _ = make_gate(security)
        await gate.select_method()
        await gate.attempt_pin("1234")

        gate.consume()
        with pytest.raises(GateConsumedException):
            gate.consume()
        with pytest.raises(GateConsumedException):
            await gate.attempt_pin("1234")

    async def test_consume_requires_acceptance(self, security):
        gate, _ = make_gate(security)
        with pytest.raises(AuthenticationException):
            gate.consume()
