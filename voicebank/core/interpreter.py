"""
Utterance Interpreter.
Turns a final transcript into the value the current flow stage is waiting for:
PIN digits, a rupee amount, a recipient, a bill category or a yes/no answer.

Everything here is a pure function of the transcript; nothing is logged,
persisted or spoken.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from voicebank.config import get_settings

settings = get_settings()


class _Ambiguous:
    """Marker returned by interpret() when nothing usable was heard."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "AMBIGUOUS"


AMBIGUOUS = _Ambiguous()


# Spoken digit words for PIN entry (English, Hindi, Devanagari numerals)
DIGIT_WORDS: Dict[str, str] = {
    "zero": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
    "शून्य": "0", "एक": "1", "दो": "2", "तीन": "3", "चार": "4",
    "पांच": "5", "पाँच": "5", "छह": "6", "छः": "6", "सात": "7",
    "आठ": "8", "नौ": "9",
    "०": "0", "१": "1", "२": "2", "३": "3", "४": "4",
    "५": "5", "६": "6", "७": "7", "८": "8", "९": "9",
}

# Spoken number words for amounts
NUMBER_WORDS: Dict[str, int] = {
    "एक": 1, "दो": 2, "तीन": 3, "चार": 4, "पांच": 5, "पाँच": 5,
    "छह": 6, "छः": 6, "सात": 7, "आठ": 8, "नौ": 9, "दस": 10,
    "बीस": 20, "तीस": 30, "चालीस": 40, "पचास": 50,
    "साठ": 60, "सत्तर": 70, "अस्सी": 80, "नब्बे": 90,
    "सौ": 100, "हजार": 1000, "हज़ार": 1000, "लाख": 100000,
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
    "hundred": 100, "thousand": 1000, "lakh": 100000,
}

UNIT_WORDS = {100, 1000, 100000}


@dataclass(frozen=True)
class BillCategory:
    """A biller category the bill-payment flow understands."""
    id: str
    name: str
    name_hi: str
    keywords: Sequence[str]


# Order matters: the first category with a matching keyword wins
BILL_CATEGORIES: List[BillCategory] = [
    BillCategory("electricity", "Electricity", "बिजली",
                 ("बिजली", "लाइट", "electricity", "electric", "light", "power")),
    BillCategory("mobile", "Mobile", "मोबाइल",
                 ("मोबाइल", "रिचार्ज", "फोन", "फ़ोन", "mobile", "recharge", "phone")),
    BillCategory("internet", "Internet", "इंटरनेट",
                 ("इंटरनेट", "वाईफाई", "ब्रॉडबैंड", "internet", "wifi", "wi-fi", "broadband")),
    BillCategory("water", "Water", "पानी",
                 ("पानी", "जल", "water")),
    BillCategory("gas", "Gas", "गैस",
                 ("गैस", "सिलेंडर", "gas", "cylinder", "lpg")),
]

AFFIRMATIVE_WORDS = (
    "हाँ", "हां", "ठीक", "भेजो", "भेज दो", "भरो", "ओके", "करो",
    "yes", "yeah", "yep", "ok", "okay", "confirm", "sure", "haan", "send", "pay",
)

NEGATIVE_WORDS = (
    "नहीं", "नही", "मत भेजो", "मत करो", "रद्द", "रुको",
    "no", "nope", "cancel", "stop", "nahi", "don't", "dont",
)

_PUNCTUATION = "।,.!?;:\"'()₹"
_LATIN = re.compile(r"[a-z]")


@dataclass(frozen=True)
class Contact:
    """A saved payee."""
    name: str
    phone: Optional[str] = None


@dataclass(frozen=True)
class RecipientMatch:
    """Result of matching an utterance against the contacts list."""
    name: str
    phone: Optional[str]
    is_new_contact: bool
    matched_text: Optional[str] = None


@dataclass
class InterpretationContext:
    """What interpret() needs besides the transcript."""
    flow_kind: str = "transfer"
    contacts: Sequence[Contact] = ()


def _tokens(text: str) -> List[str]:
    return [t.strip(_PUNCTUATION) for t in text.lower().split()]


def _as_ascii_digit(ch: str) -> str:
    return str(unicodedata.digit(ch))


def extract_pin(
    text: str,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None
) -> Optional[str]:
    """
    Pull a 4-6 digit PIN out of a spoken utterance.

    Literal digits win when there are at least four of them; otherwise each
    whitespace token is looked up in DIGIT_WORDS and unknown tokens are
    dropped. Returns None when fewer than min_length digits were heard.
    """
    min_length = min_length or settings.PIN_MIN_LENGTH
    max_length = max_length or settings.PIN_MAX_LENGTH

    digits = [_as_ascii_digit(ch) for ch in re.findall(r"\d", text)]
    if len(digits) >= min_length:
        pin = "".join(digits)
    else:
        pin = ""
        for word in _tokens(text):
            if word in DIGIT_WORDS:
                pin += DIGIT_WORDS[word]
            elif len(word) == 1 and word.isdigit():
                pin += _as_ascii_digit(word)

    pin = pin[:max_length]
    if len(pin) < min_length:
        return None
    return pin


def extract_amount(text: str) -> Optional[int]:
    """
    Read a rupee amount from an utterance.

    "500", "₹500" and "पांच सौ" all give 500. A unit word (सौ, हजार, लाख)
    multiplies whatever was accumulated before it, or 1 when nothing was.
    """
    match = re.search(r"\d+", text.replace(",", ""))
    if match:
        amount = int("".join(_as_ascii_digit(ch) for ch in match.group(0)))
        return amount if amount > 0 else None

    total = 0
    current = 0
    for word in _tokens(text):
        value = NUMBER_WORDS.get(word)
        if not value:
            continue
        if value in UNIT_WORDS:
            total += (current or 1) * value
            current = 0
        else:
            current += value
    total += current

    return total if total > 0 else None


def clean_utterance(text: str) -> str:
    """Trim whitespace and sentence punctuation from a transcript."""
    return " ".join(text.split()).strip(_PUNCTUATION + " ")


def match_recipient(text: str, contacts: Iterable[Contact]) -> Optional[RecipientMatch]:
    """
    Find the payee named in the utterance.

    Saved contacts match on a case-insensitive name substring or on their
    phone number appearing in the utterance. Anything else becomes a new
    contact named by the whole cleaned utterance.
    """
    cleaned = clean_utterance(text)
    if not cleaned:
        return None

    lowered = cleaned.lower()
    for contact in contacts:
        if contact.name and contact.name.lower() in lowered:
            return RecipientMatch(contact.name, contact.phone, False, contact.name)
        if contact.phone and contact.phone in cleaned:
            return RecipientMatch(contact.name, contact.phone, False, contact.phone)

    return RecipientMatch(cleaned, None, True)


def extract_bill_category(text: str) -> Optional[BillCategory]:
    """Return the first bill category whose keywords appear in the utterance."""
    lowered = text.lower()
    for category in BILL_CATEGORIES:
        if any(keyword in lowered for keyword in category.keywords):
            return category
    return None


def find_bill_category(category_id: str) -> Optional[BillCategory]:
    """Look a bill category up by id (used for on-screen selection)."""
    for category in BILL_CATEGORIES:
        if category.id == category_id:
            return category
    return None


def _contains_keyword(text: str, tokens: List[str], keyword: str) -> bool:
    # Latin keywords must be whole words so "no" does not fire on "know"
    if _LATIN.search(keyword):
        if " " in keyword:
            return keyword in text
        return keyword in tokens
    return keyword in text


def classify_confirmation(text: str) -> Optional[bool]:
    """
    True for yes, False for no, None when neither was said.

    Negative words are checked first: "नहीं भेजो" is a refusal.
    """
    lowered = text.lower()
    tokens = _tokens(text)

    if any(_contains_keyword(lowered, tokens, word) for word in NEGATIVE_WORDS):
        return False
    if any(_contains_keyword(lowered, tokens, word) for word in AFFIRMATIVE_WORDS):
        return True
    return None


def interpret(transcript: str, stage: str, context: InterpretationContext) -> Any:
    """
    Interpret a transcript for the given flow stage.

    Returns the parsed value for the stage or AMBIGUOUS.
    """
    stage = getattr(stage, "value", stage)

    if stage == "collect_target":
        if context.flow_kind == "bill_payment":
            value = extract_bill_category(transcript)
        else:
            value = match_recipient(transcript, context.contacts)
    elif stage == "collect_amount":
        value = extract_amount(transcript)
    elif stage == "confirm":
        value = classify_confirmation(transcript)
    elif stage in ("authenticate", "enroll"):
        value = extract_pin(transcript)
    else:
        value = None

    return AMBIGUOUS if value is None else value
