"""Core module initialization."""

from voicebank.core.exceptions import (
    VoiceBankException,
    STTException,
    TTSException,
    LLMException,
    LedgerException,
    AuthenticationException,
    SessionException,
    FlowException
)
from voicebank.core.auth_gate import AuthenticationGate
from voicebank.core.executor import TransactionExecutor
from voicebank.core.flow import FlowController, FlowSession, Stage
from voicebank.core.session import FlowSessionManager

__all__ = [
    "VoiceBankException",
    "STTException",
    "TTSException",
    "LLMException",
    "LedgerException",
    "AuthenticationException",
    "SessionException",
    "FlowException",
    "AuthenticationGate",
    "TransactionExecutor",
    "FlowController",
    "FlowSession",
    "Stage",
    "FlowSessionManager"
]
