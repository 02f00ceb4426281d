"""
Core exceptions for the Voice Banking backend.
Custom exception classes for structured error handling.
"""

from typing import Optional, Dict, Any


class VoiceBankException(Exception):
    """Base exception for Voice Banking errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "VOICE_BANK_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# =========================
# STT Exceptions
# =========================

class STTException(VoiceBankException):
    """Base exception for speech capture errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="STT_ERROR",
            status_code=502,
            details=details
        )


class STTPermissionDeniedException(STTException):
    """Raised when the client denied microphone access."""

    def __init__(self):
        super().__init__(
            message="Microphone permission denied",
            details={"error_type": "permission_denied"}
        )


class STTUnsupportedException(STTException):
    """Raised when the client has no speech recognition support."""

    def __init__(self):
        super().__init__(
            message="Speech recognition is not supported on this device",
            details={"error_type": "unsupported"}
        )


class STTNetworkException(STTException):
    """Raised when the recognizer lost its network connection."""

    def __init__(self, error: str = "network"):
        super().__init__(
            message=f"Speech recognition network error: {error}",
            details={"error_type": "network", "error": error}
        )


class STTNoSpeechException(STTException):
    """Raised when listening ended without any recognized speech."""

    def __init__(self):
        super().__init__(
            message="No speech detected",
            details={"error_type": "no_speech"}
        )


# =========================
# TTS Exceptions
# =========================

class TTSException(VoiceBankException):
    """Base exception for TTS errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="TTS_ERROR",
            status_code=500,
            details=details
        )


class TTSUnsupportedLanguageException(TTSException):
    """Raised when TTS language is not supported."""

    def __init__(self, language: str, supported: list):
        super().__init__(
            message=f"Language '{language}' is not supported for TTS",
            details={"language": language, "supported_languages": supported}
        )


# =========================
# LLM Exceptions
# =========================

class LLMException(VoiceBankException):
    """Base exception for intent classifier errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="LLM_ERROR",
            status_code=502,
            details=details
        )


class LLMAPIException(LLMException):
    """Raised when Groq API returns an error."""

    def __init__(self, api_error: str, status_code: int = 500):
        super().__init__(
            message=f"LLM API error: {api_error}",
            details={"api_error": api_error, "api_status_code": status_code}
        )


class LLMTimeoutException(LLMException):
    """Raised when LLM processing times out."""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            message=f"LLM processing timed out after {timeout_seconds} seconds",
            details={"timeout_seconds": timeout_seconds}
        )


class LLMRateLimitException(LLMException):
    """Raised when LLM API rate limit is exceeded."""

    def __init__(self, retry_after: Optional[float] = None):
        super().__init__(
            message="LLM API rate limit exceeded",
            details={"retry_after_seconds": retry_after}
        )


# =========================
# Ledger Exceptions
# =========================

class LedgerException(VoiceBankException):
    """Base exception for ledger errors."""

    def __init__(
        self,
        message: str,
        reason: str = "ledger_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.reason = reason
        super().__init__(
            message=message,
            error_code="LEDGER_ERROR",
            status_code=status_code,
            details={"reason": reason, **(details or {})}
        )


class AccountNotFoundException(LedgerException):
    """Raised when a user has no account."""

    def __init__(self, user_id: str):
        super().__init__(
            message=f"No account found for user '{user_id}'",
            reason="account_not_found",
            status_code=404,
            details={"user_id": user_id}
        )


class InsufficientFundsException(LedgerException):
    """Raised when a debit exceeds the available balance."""

    def __init__(self, amount: int, balance: int):
        super().__init__(
            message=f"Insufficient balance: requested {amount}, available {balance}",
            reason="insufficient_funds",
            status_code=409,
            details={"amount": amount, "balance": balance}
        )


class LedgerUnavailableException(LedgerException):
    """Raised when the ledger store could not be reached."""

    def __init__(self, error: str):
        super().__init__(
            message=f"Ledger unavailable: {error}",
            reason="ledger_unavailable",
            status_code=503,
            details={"error": error}
        )


# =========================
# Authentication Exceptions
# =========================

class AuthenticationException(VoiceBankException):
    """Base exception for authentication errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="AUTH_ERROR",
            status_code=403,
            details=details
        )


class GateConsumedException(AuthenticationException):
    """Raised when a gate that already authorized a transaction is reused."""

    def __init__(self):
        super().__init__(
            message="Authentication gate already used for a transaction",
            details={"error_type": "gate_consumed"}
        )


class BiometricsUnavailableException(AuthenticationException):
    """Raised when voice biometrics are requested without a verifier."""

    def __init__(self):
        super().__init__(
            message="Voice biometric verifier is not configured",
            details={"error_type": "biometrics_unavailable"}
        )


# =========================
# Session Exceptions
# =========================

class SessionException(VoiceBankException):
    """Base exception for session errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="SESSION_ERROR",
            status_code=400,
            details=details
        )


class SessionNotFoundException(SessionException):
    """Raised when session is not found."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Session '{session_id}' not found",
            details={"session_id": session_id}
        )
        self.status_code = 404


# =========================
# Flow Exceptions
# =========================

class FlowException(VoiceBankException):
    """Base exception for flow state machine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="FLOW_ERROR",
            status_code=409,
            details=details
        )


class FlowStateException(FlowException):
    """Raised on a transition the state machine does not allow."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot move flow from '{current}' to '{requested}'",
            details={"current": current, "requested": requested}
        )
