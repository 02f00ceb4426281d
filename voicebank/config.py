"""
Configuration management for the Voice Banking backend.
Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path
from typing import Optional, List
from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "Voice Banking Assistant"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Environment name")

    # =========================
    # API Keys
    # =========================
    GROQ_API_KEY: Optional[str] = Field(default=None, description="Groq API key for intent classification")
    PICOVOICE_ACCESS_KEY: Optional[str] = Field(
        default=None,
        description="Picovoice access key; enables Eagle voice biometrics when set"
    )

    # =========================
    # Server Settings
    # =========================
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8000, description="Server port")

    # =========================
    # Database Settings
    # =========================
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./data/voicebank.db",
        description="Ledger database connection URL"
    )
    DATABASE_ECHO: bool = Field(default=False, description="Echo SQL queries")

    # =========================
    # Intent Classifier Settings
    # =========================
    LLM_MODEL_ID: str = Field(
        default="llama-3.1-8b-instant",
        description="Groq model used for home-screen intent classification"
    )
    LLM_TIMEOUT_SECONDS: float = Field(default=5.0, description="LLM API timeout")
    LLM_MAX_TOKENS: int = Field(default=300, description="Maximum tokens for an intent response")

    # =========================
    # Voice Authentication
    # =========================
    VOICE_VERIFICATION_THRESHOLD: float = Field(
        default=0.70,
        description="Minimum speaker-verification confidence to accept a voice attempt"
    )
    VOICE_CAPTURE_MS: int = Field(
        default=3000,
        description="Length of the audio window captured for one voice verification"
    )
    MAX_AUTH_ATTEMPTS: int = Field(
        default=3,
        description="Authentication attempts allowed per gate before it is exhausted"
    )
    PIN_MIN_LENGTH: int = Field(default=4, description="Shortest accepted spoken PIN")
    PIN_MAX_LENGTH: int = Field(default=6, description="Longest accepted spoken PIN")

    # =========================
    # Speech Settings
    # =========================
    STT_SILENCE_TIMEOUT_MS: int = Field(
        default=2000,
        description="Silence after the last partial result before it is promoted to final"
    )
    AUDIO_SAMPLE_RATE: int = Field(default=16000, description="Audio sample rate in Hz")
    TTS_TIMEOUT_SECONDS: float = Field(default=10.0, description="TTS synthesis timeout")

    # =========================
    # Flow / Session Settings
    # =========================
    SESSION_TIMEOUT_MINUTES: int = Field(default=15, description="Flow session idle timeout")
    MAX_SESSIONS: int = Field(default=100, description="Maximum concurrent flow sessions")
    DEFAULT_BILL_AMOUNT: int = Field(default=1250, description="Due amount used when a biller reports none")
    TRANSACTION_HISTORY_LIMIT: int = Field(default=20, description="Transactions returned by history reads")

    # =========================
    # Logging Settings
    # =========================
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    AGENT_LOG_PATH: Path = Field(
        default=Path("./logs/agent_log.md"),
        description="Path to the flow audit markdown log"
    )

    # =========================
    # Supported Languages
    # =========================
    SUPPORTED_LANGUAGES: List[str] = Field(
        default=["hi", "en"],
        description="Supported language codes"
    )
    DEFAULT_LANGUAGE: str = Field(default="hi", description="Default language")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Language mapping for display names
LANGUAGE_NAMES = {
    "hi": "Hindi (हिन्दी)",
    "en": "English"
}

# Language to edge-tts voice mapping
TTS_VOICES = {
    "hi": "hi-IN-SwaraNeural",
    "en": "en-IN-NeerjaNeural"
}

# Contacts offered on the send-money screen
DEFAULT_CONTACTS = [
    {"name": "राम कुमार", "phone": "9876543210"},
    {"name": "सीता देवी", "phone": "9876543211"},
    {"name": "मोहन लाल", "phone": "9876543212"},
]

# Ledger transaction types
TRANSACTION_TYPES = [
    "credit",
    "debit",
    "bill"
]
