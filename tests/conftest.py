"""
Shared fixtures and in-memory collaborators for the flow tests.
"""

import os
import tempfile
from types import SimpleNamespace
from uuid import uuid4

# Settings are cached on first import; configure the environment before that
_LOG_DIR = tempfile.mkdtemp(prefix="voicebank-tests-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GROQ_API_KEY"] = ""
os.environ["PICOVOICE_ACCESS_KEY"] = ""
os.environ["AGENT_LOG_PATH"] = os.path.join(_LOG_DIR, "agent_log.md")

import pytest

from voicebank.core.exceptions import LedgerUnavailableException
from voicebank.core.flow import BankingContext, FlowController, FlowKind, FlowServices
from voicebank.services.banking import BankingService
from voicebank.services.security import SecurityProfileService, hash_pin

USER_ID = "user-1"


class FakeSpeech:
    """Records prompts instead of playing them."""

    def __init__(self):
        self.spoken = []
        self.stops = 0

    def speak(self, text, language="hi"):
        self.spoken.append(text)

    def stop(self):
        self.stops += 1

    @property
    def last(self):
        return self.spoken[-1] if self.spoken else None


class FakeListener:
    def __init__(self):
        self.stopped = False

    def stop_listening(self):
        self.stopped = True


class FakeLedger:
    """In-memory ledger with idempotent submission."""

    def __init__(self, balances=None):
        self.accounts = {}
        self.transactions = []
        self.submissions = 0
        self.fail_submit = None
        self.fail_reads = False
        for user_id, balance in (balances or {}).items():
            self.add_account(user_id, balance)

    def add_account(self, user_id, balance):
        self.accounts[user_id] = SimpleNamespace(
            id=str(uuid4()), user_id=user_id, balance=balance, account_number="501234567890"
        )

    async def get_account(self, user_id):
        if self.fail_reads:
            raise LedgerUnavailableException("connection refused")
        account = self.accounts.get(user_id)
        if account is None:
            return None
        # A copy, like a detached ORM row
        return SimpleNamespace(**vars(account))

    async def list_transactions(self, user_id, limit=20):
        rows = [tx for tx in self.transactions if tx.user_id == user_id]
        return list(reversed(rows))[:limit]

    async def submit_transaction(self, user_id, record):
        self.submissions += 1
        if self.fail_submit is not None:
            raise self.fail_submit

        for tx in self.transactions:
            if tx.idempotency_key == record["idempotency_key"]:
                return tx

        account = self.accounts[user_id]
        if record["type"] == "credit":
            account.balance += record["amount"]
        else:
            account.balance -= record["amount"]

        tx = SimpleNamespace(id=str(uuid4()), user_id=user_id, **record)
        tx.to_dict = lambda: dict(record)
        self.transactions.append(tx)
        return tx


class FakeProfileStore:
    def __init__(self):
        self.pin_hashes = {}
        self.voice_profiles = {}
        self.pin_reads = 0

    async def get_pin_hash(self, user_id):
        self.pin_reads += 1
        return self.pin_hashes.get(user_id)

    async def set_pin_hash(self, user_id, pin_hash):
        self.pin_hashes[user_id] = pin_hash

    async def get_voice_profile(self, user_id):
        return self.voice_profiles.get(user_id)

    async def set_voice_profile(self, user_id, profile):
        self.voice_profiles[user_id] = profile

    async def clear_voice_profile(self, user_id):
        self.voice_profiles.pop(user_id, None)


class ScriptedBiometrics:
    """Voice verification returning a fixed sequence of scores."""

    def __init__(self, scores=None, available=True):
        self.scores = list(scores or [])
        self.available = available
        self.calls = 0

    async def verify(self, user_id, audio):
        self.calls += 1
        score = self.scores.pop(0)
        if isinstance(score, Exception):
            raise score
        return score


class FakeVerifier:
    """VoiceVerifier with scripted frame scores and a two-frame enrollment."""

    min_enroll_samples = 2

    def __init__(self, scores=None):
        self.scores = list(scores or [])
        self.enrolled_frames = 0
        self.released = False
        self.enroll_resets = 0
        self.enrolled_sizes = []

    async def enroll(self, pcm):
        self.enrolled_frames += 1
        self.enrolled_sizes.append(len(pcm))
        percentage = min(100.0, 50.0 * self.enrolled_frames)
        return percentage, "keep speaking" if percentage < 100 else "done"

    async def export(self):
        return b"voice-profile"

    def reset_enrollment(self):
        self.enroll_resets += 1

    async def verify(self, pcm, profile):
        return self.scores.pop(0)

    def release(self):
        self.released = True


class ListAudio:
    """AudioSource over a fixed list of frames."""

    def __init__(self, frames):
        self._frames = list(frames)

    async def frames(self):
        for frame in self._frames:
            yield frame


@pytest.fixture
def speech():
    return FakeSpeech()


@pytest.fixture
def ledger():
    return FakeLedger({USER_ID: 10000})


@pytest.fixture
def store():
    return FakeProfileStore()


@pytest.fixture
def banking(ledger):
    return BankingService(ledger)


@pytest.fixture
def security(store):
    return SecurityProfileService(store)


@pytest.fixture
def make_flow(ledger, store, banking, security, speech):
    """
    Build and start a flow.

    pin: stored PIN or None; scores: voice scores, which also enrolls a
    voice profile.
    """

    async def _make(
        kind=FlowKind.TRANSFER,
        pin="1234",
        scores=None,
        balance=None,
        bill_dues=None,
        language="hi",
        listener=None,
        agent_logger=None,
    ):
        if balance is not None:
            ledger.accounts[USER_ID].balance = balance
        if pin:
            store.pin_hashes[USER_ID] = hash_pin(pin)
        if scores is not None:
            store.voice_profiles[USER_ID] = b"voice-profile"

        context = BankingContext.with_defaults(USER_ID, language)
        context.bill_dues = dict(bill_dues or {})
        services = FlowServices(
            banking=banking,
            security=security,
            biometrics=ScriptedBiometrics(scores, available=scores is not None),
            speech=speech,
            listener=listener,
            agent_logger=agent_logger,
        )
        controller = FlowController(kind, context, services)
        await controller.start()
        return controller

    return _make
