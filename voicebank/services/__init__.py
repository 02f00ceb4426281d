"""Services module initialization."""

from voicebank.services.banking import BankingService
from voicebank.services.biometrics import VoiceBiometricService
from voicebank.services.llm import IntentClassifier
from voicebank.services.security import SecurityProfileService
from voicebank.services.tts import TTSService, PromptRecorder

__all__ = [
    "BankingService",
    "VoiceBiometricService",
    "IntentClassifier",
    "SecurityProfileService",
    "TTSService",
    "PromptRecorder"
]
