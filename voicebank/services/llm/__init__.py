"""
Intent Classifier using Groq API.
Maps a home-screen voice command to an intent, a short spoken reply and an
optional navigation target. Used outside the transaction flows.
"""

import asyncio
import json
import logging
import re
import time
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from voicebank.config import get_settings
from voicebank.core.exceptions import (
    LLMAPIException,
    LLMRateLimitException,
    LLMTimeoutException,
)
from voicebank.core.interpreter import extract_amount, extract_bill_category
from voicebank.core.messages import format_rupees

logger = logging.getLogger(__name__)
settings = get_settings()

Intent = Literal[
    "check_balance", "send_money", "pay_bills", "view_history",
    "help", "greeting", "unknown", "error",
]

ROUTES = {
    "check_balance": "/check-balance",
    "send_money": "/send-money",
    "pay_bills": "/pay-bills",
    "view_history": "/history",
}

FALLBACK_RESPONSES = {
    "hi": "माफ कीजिए, मुझे समझ नहीं आया। कृपया दोबारा बोलें।",
    "en": "Sorry, I didn't understand. Please try again.",
}

ERROR_RESPONSES = {
    "hi": "माफ कीजिए, कुछ गड़बड़ हुई।",
    "en": "Sorry, something went wrong.",
}

_CODE_FENCE = re.compile(r"```(?:json)?\n?")


class CommandEntities(BaseModel):
    amount: Optional[int] = None
    recipient: Optional[str] = None
    bill_type: Optional[str] = None


class VoiceCommandResponse(BaseModel):
    intent: Intent = "unknown"
    response: str
    action: Optional[Literal["navigate", "speak"]] = None
    route: Optional[str] = None
    entities: CommandEntities = Field(default_factory=CommandEntities)

    @classmethod
    def fallback(cls, language: str) -> "VoiceCommandResponse":
        return cls(
            intent="unknown",
            response=FALLBACK_RESPONSES.get(language, FALLBACK_RESPONSES["hi"]),
            action="speak",
        )

    @classmethod
    def error(cls, language: str) -> "VoiceCommandResponse":
        return cls(
            intent="error",
            response=ERROR_RESPONSES.get(language, ERROR_RESPONSES["hi"]),
            action="speak",
        )


def build_system_prompt(language: str, balance: Optional[int] = None) -> str:
    """System prompt for the classifier, in the reply language."""
    reply_language = "Hindi (Devanagari script)" if language == "hi" else "English"
    balance_text = format_rupees(balance) if balance is not None else "24,580"

    return f"""You are a voice banking assistant for rural India. Analyze user commands and respond with JSON.

IMPORTANT: Always respond with valid JSON in this exact format:
{{
  "intent": "check_balance" | "send_money" | "pay_bills" | "view_history" | "help" | "greeting" | "unknown",
  "response": "Your spoken response in {reply_language}",
  "action": "navigate" | "speak" | null,
  "route": "/check-balance" | "/send-money" | "/pay-bills" | "/history" | null,
  "entities": {{
    "amount": number or null,
    "recipient": "name" or null,
    "bill_type": "electricity" | "mobile" | "gas" | "water" or null
  }}
}}

INTENT DETECTION RULES:
- "balance", "बैलेंस", "पैसे कितने", "खाते में", "check" → check_balance
- "भेजो", "भेजना", "transfer", "send", "पैसे देना" → send_money
- "बिल", "bill", "recharge", "रिचार्ज", "बिजली", "electricity", "mobile", "gas" → pay_bills
- "history", "इतिहास", "पिछले", "transactions", "लेनदेन" → view_history
- "help", "मदद", "सहायता", "कैसे" → help
- "नमस्ते", "hello", "hi" → greeting

RESPONSE RULES:
1. Keep responses SHORT (1-2 sentences) for speaking
2. For balance: say "आपके खाते में ₹{balance_text} उपलब्ध हैं।"
3. For send_money: navigate to send money page
4. For pay_bills: ask which bill or navigate
5. Be friendly and use simple Hindi/English

EXAMPLES:
User: "मेरा बैलेंस बताओ"
{{"intent":"check_balance","response":"आपके खाते में ₹{balance_text} उपलब्ध हैं।","action":"speak","route":null,"entities":{{}}}}

User: "पैसे भेजना है"
{{"intent":"send_money","response":"किसे पैसे भेजना है? Send Money पेज खोल रहा हूं।","action":"navigate","route":"/send-money","entities":{{}}}}

User: "राम को 500 भेजो"
{{"intent":"send_money","response":"राम को ₹500 भेजने के लिए Send Money पेज खोल रहा हूं।","action":"navigate","route":"/send-money","entities":{{"amount":500,"recipient":"राम"}}}}

User: "बिजली का बिल भरना है"
{{"intent":"pay_bills","response":"बिजली बिल भरने के लिए Pay Bills पेज खोल रहा हूं।","action":"navigate","route":"/pay-bills","entities":{{"bill_type":"electricity"}}}}"""


def parse_command_response(content: str, language: str) -> VoiceCommandResponse:
    """Parse the model output; anything malformed becomes the fallback reply."""
    cleaned = _CODE_FENCE.sub("", content).strip()
    try:
        return VoiceCommandResponse.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Unparseable intent response ({e.__class__.__name__}): {content[:200]}")
        return VoiceCommandResponse.fallback(language)


# Keyword rules used when no Groq key is configured
_KEYWORD_INTENTS = [
    ("check_balance", ("balance", "बैलेंस", "पैसे कितने", "खाते में", "check")),
    ("send_money", ("भेजो", "भेजना", "transfer", "send", "पैसे देना")),
    ("pay_bills", ("बिल", "bill", "recharge", "रिचार्ज", "बिजली", "electricity", "mobile", "gas")),
    ("view_history", ("history", "इतिहास", "पिछले", "transactions", "लेनदेन")),
    ("help", ("help", "मदद", "सहायता", "कैसे")),
    ("greeting", ("नमस्ते", "hello", "hi")),
]

_KEYWORD_REPLIES = {
    "send_money": {"hi": "Send Money पेज खोल रहा हूं।", "en": "Opening Send Money."},
    "pay_bills": {"hi": "Pay Bills पेज खोल रहा हूं।", "en": "Opening Pay Bills."},
    "view_history": {"hi": "आपके पिछले लेनदेन दिखा रहा हूं।", "en": "Showing your recent transactions."},
    "help": {
        "hi": "आप बैलेंस देख सकते हैं, पैसे भेज सकते हैं या बिल भर सकते हैं।",
        "en": "You can check your balance, send money or pay bills.",
    },
    "greeting": {"hi": "नमस्ते! मैं आपकी कैसे मदद करूं?", "en": "Hello! How can I help you?"},
}


class IntentClassifier:
    """
    Groq-backed classifier for home-screen commands.

    Without an API key it falls back to the keyword rules of the prompt.
    """

    def __init__(self, client=None):
        self._client = client
        self._is_initialized = client is not None
        self._model = settings.LLM_MODEL_ID

    async def initialize(self):
        """Create the Groq client."""
        if self._client is not None:
            return
        if not settings.GROQ_API_KEY:
            logger.warning("GROQ_API_KEY not set, using keyword intent rules")
            return

        from groq import AsyncGroq

        self._client = AsyncGroq(api_key=settings.GROQ_API_KEY)
        self._is_initialized = True
        logger.info(f"Intent classifier initialized with model: {self._model}")

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    async def classify(
        self,
        utterance: str,
        language: str = "hi",
        balance: Optional[int] = None
    ) -> VoiceCommandResponse:
        """
        Classify one utterance.

        Raises LLM exceptions on API failure; malformed model output is not
        an error and yields the fallback reply.
        """
        if not self._is_initialized:
            return self._keyword_classify(utterance, language, balance)

        start_time = time.time()
        logger.info(f"Classifying voice command: \"{utterance}\" ({language})")

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": build_system_prompt(language, balance)},
                        {"role": "user", "content": utterance},
                    ],
                    max_tokens=settings.LLM_MAX_TOKENS,
                ),
                timeout=settings.LLM_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            raise LLMTimeoutException(settings.LLM_TIMEOUT_SECONDS)
        except Exception as e:
            if "rate_limit" in str(e).lower() or "429" in str(e):
                raise LLMRateLimitException()
            raise LLMAPIException(str(e))

        content = response.choices[0].message.content or ""
        result = parse_command_response(content, language)
        logger.info(
            f"Intent {result.intent} in {(time.time() - start_time) * 1000:.0f}ms"
        )
        return result

    def _keyword_classify(
        self,
        utterance: str,
        language: str,
        balance: Optional[int]
    ) -> VoiceCommandResponse:
        lowered = utterance.lower()
        words = lowered.split()

        for intent, keywords in _KEYWORD_INTENTS:
            # Short Latin keywords ("hi") must be whole words
            if not any(k in words if len(k) <= 3 and k.isascii() else k in lowered for k in keywords):
                continue

            if intent == "check_balance":
                if balance is None:
                    break
                text = (
                    f"आपके खाते में ₹{format_rupees(balance)} उपलब्ध हैं।"
                    if language == "hi"
                    else f"You have ₹{format_rupees(balance)} available in your account."
                )
                return VoiceCommandResponse(intent=intent, response=text, action="speak")

            replies = _KEYWORD_REPLIES[intent]
            entities = CommandEntities()
            if intent == "send_money":
                entities.amount = extract_amount(utterance)
            elif intent == "pay_bills":
                category = extract_bill_category(utterance)
                entities.bill_type = category.id if category else None

            return VoiceCommandResponse(
                intent=intent,
                response=replies.get(language, replies["hi"]),
                action="navigate" if intent in ROUTES else "speak",
                route=ROUTES.get(intent),
                entities=entities,
            )

        return VoiceCommandResponse.fallback(language)

    async def cleanup(self):
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
        self._client = None
        self._is_initialized = False
        logger.info("Intent classifier cleaned up")
