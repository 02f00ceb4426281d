"""
Spoken and displayed prompts for the voice flows, in Hindi and English.
"""

from typing import Dict

PROMPTS: Dict[str, Dict[str, str]] = {
    # Send money
    "ask_recipient": {
        "hi": "किसे पैसे भेजना है? नाम या फोन नंबर बोलें।",
        "en": "Who do you want to send money to? Say a name or phone number.",
    },
    "ask_amount_contact": {
        "hi": "{name} ({phone}) को कितने रुपये भेजने हैं?",
        "en": "How much should I send to {name} ({phone})?",
    },
    "ask_amount_new": {
        "hi": "{name} को कितने रुपये भेजने हैं?",
        "en": "How much should I send to {name}?",
    },
    "amount_unclear": {
        "hi": "कृपया राशि बताएं, जैसे 'पांच सौ रुपये' या '500'",
        "en": "Please tell me the amount, for example 'five hundred' or '500'.",
    },
    "confirm_transfer": {
        "hi": "{name} को ₹{amount} भेजने के लिए 'हाँ' बोलें।",
        "en": "Say 'yes' to send ₹{amount} to {name}.",
    },
    "transfer_success": {
        "hi": "✅ {name} को ₹{amount} भेज दिए गए।",
        "en": "✅ ₹{amount} sent to {name}.",
    },
    "transfer_cancelled": {
        "hi": "ट्रांसफर रद्द किया गया।",
        "en": "Transfer cancelled.",
    },

    # Bill payment
    "ask_bill": {
        "hi": "कौन सा बिल भरना है? बिजली, मोबाइल, या पानी?",
        "en": "Which bill do you want to pay? Electricity, mobile or water?",
    },
    "bill_unclear": {
        "hi": "समझ नहीं आया। बिजली, मोबाइल, इंटरनेट, पानी या गैस बोलें।",
        "en": "I didn't catch that. Say electricity, mobile, internet, water or gas.",
    },
    "confirm_bill": {
        "hi": "{bill} बिल ₹{amount} है। 'हाँ' बोलें।",
        "en": "Your {bill} bill is ₹{amount}. Say 'yes' to pay.",
    },
    "bill_success": {
        "hi": "✅ {bill} बिल ₹{amount} भर दिया।",
        "en": "✅ {bill} bill of ₹{amount} paid.",
    },
    "bill_cancelled": {
        "hi": "बिल भुगतान रद्द किया गया।",
        "en": "Bill payment cancelled.",
    },

    # Confirmation
    "confirm_unclear": {
        "hi": "कृपया 'हाँ' या 'नहीं' बोलें।",
        "en": "Please say 'yes' or 'no'.",
    },
    "insufficient_funds": {
        "hi": "❌ अपर्याप्त राशि। आपके खाते में पर्याप्त पैसे नहीं हैं।",
        "en": "❌ Insufficient balance. Your account does not have enough money.",
    },

    # Authentication
    "auth_voice": {
        "hi": "🔒 आवाज़ से पहचान करें।",
        "en": "🔒 Verify with your voice.",
    },
    "auth_voice_listening": {
        "hi": "अभी बोलना शुरू करें। कुछ भी बोलें।",
        "en": "Start speaking now. Say anything.",
    },
    "auth_voice_hint": {
        "hi": "आवाज़ पहचान के लिए माइक दबाएं।",
        "en": "Press the microphone to verify your voice.",
    },
    "auth_voice_success": {
        "hi": "आवाज़ पहचान सफल!",
        "en": "Voice verified!",
    },
    "auth_voice_rejected": {
        "hi": "आवाज़ मेल नहीं खाई। कृपया दोबारा कोशिश करें। ({attempts})",
        "en": "Voice did not match. Please try again. ({attempts})",
    },
    "auth_voice_exhausted_offer_pin": {
        "hi": "बहुत सारे असफल प्रयास। क्या आप PIN का उपयोग करना चाहते हैं? 'हाँ' या 'नहीं' बोलें।",
        "en": "Too many failed attempts. Would you like to use your PIN instead? Say 'yes' or 'no'.",
    },
    "auth_pin": {
        "hi": "🔒 सुरक्षा के लिए अपना PIN बोलें।",
        "en": "🔒 Say your PIN for security.",
    },
    "auth_pin_unclear": {
        "hi": "कृपया अपना पूरा PIN बोलें",
        "en": "Please say your full PIN.",
    },
    "auth_pin_success": {
        "hi": "✅ PIN सत्यापित!",
        "en": "✅ PIN verified!",
    },
    "auth_pin_rejected": {
        "hi": "गलत PIN। कृपया पुनः प्रयास करें। ({attempts})",
        "en": "Incorrect PIN. Please try again. ({attempts})",
    },
    "auth_exhausted": {
        "hi": "बहुत सारे गलत प्रयास। कृपया बाद में पुनः प्रयास करें।",
        "en": "Too many failed attempts. Please try again later.",
    },
    "auth_cancelled": {
        "hi": "सत्यापन रद्द किया गया। दोबारा कोशिश के लिए 'हाँ' बोलें।",
        "en": "Verification cancelled. Say 'yes' to try again.",
    },
    "auth_error": {
        "hi": "त्रुटि हुई। कृपया PIN का उपयोग करें।",
        "en": "Something went wrong. Please use your PIN.",
    },

    # Enrollment / PIN setup
    "enroll_required": {
        "hi": "लेनदेन से पहले सुरक्षा PIN सेट करें। अपना 4-6 अंक का PIN बोलें।",
        "en": "Set a security PIN before this transaction. Say your 4-6 digit PIN.",
    },
    "pin_setup_start": {
        "hi": "अपना 4-6 अंक का PIN बोलें।",
        "en": "Say your 4-6 digit PIN.",
    },
    "pin_setup_unclear": {
        "hi": "कृपया 4-6 अंक बोलें। जैसे: एक दो तीन चार",
        "en": "Please say 4 to 6 digits, like: one two three four.",
    },
    "pin_setup_confirm": {
        "hi": "PIN सुना: {digits}. पुष्टि के लिए दोबारा बोलें।",
        "en": "PIN heard: {digits}. Say it again to confirm.",
    },
    "pin_setup_mismatch": {
        "hi": "PIN मेल नहीं खाता। फिर से शुरू करें।",
        "en": "The PINs don't match. Let's start again.",
    },
    "pin_setup_success": {
        "hi": "✅ आपका सुरक्षा PIN सेट हो गया!",
        "en": "✅ Your security PIN is set!",
    },
    "pin_setup_failed": {
        "hi": "PIN सेट करने में त्रुटि। कृपया पुनः प्रयास करें।",
        "en": "Could not set the PIN. Please try again.",
    },

    # Execution / failures
    "transfer_failed": {
        "hi": "❌ ट्रांसफर विफल। कृपया दोबारा कोशिश करें।",
        "en": "❌ Transfer failed. Please try again.",
    },
    "bill_failed": {
        "hi": "❌ बिल भुगतान विफल। कृपया दोबारा कोशिश करें।",
        "en": "❌ Bill payment failed. Please try again.",
    },
    "cannot_cancel": {
        "hi": "लेनदेन चल रहा है, अब रद्द नहीं हो सकता।",
        "en": "The transaction is already in progress and cannot be cancelled.",
    },
    "generic_error": {
        "hi": "माफ कीजिए, कुछ गड़बड़ हुई। कृपया दोबारा कोशिश करें।",
        "en": "Sorry, something went wrong. Please try again.",
    },
    "service_error": {
        "hi": "सेवा उपलब्ध नहीं है: {detail}",
        "en": "Service unavailable: {detail}",
    },
    "mic_permission_denied": {
        "hi": "माइक्रोफ़ोन की अनुमति नहीं मिली। कृपया अनुमति दें।",
        "en": "Microphone permission denied. Please allow microphone access.",
    },
    "mic_unsupported": {
        "hi": "इस डिवाइस पर आवाज़ पहचान उपलब्ध नहीं है।",
        "en": "Speech recognition is not supported on this device.",
    },
    "no_speech": {
        "hi": "मैं स्पष्ट रूप से नहीं सुन पाया। क्या आप दोहरा सकते हैं?",
        "en": "I didn't catch that clearly. Could you please repeat?",
    },

    # Balance
    "balance_summary": {
        "hi": "आपके खाते में ₹{balance} उपलब्ध हैं।",
        "en": "You have ₹{balance} available in your account.",
    },
}


def format_rupees(amount: int) -> str:
    """Format an amount with Indian digit grouping: 125000 -> 1,25,000."""
    sign = "-" if amount < 0 else ""
    digits = str(abs(int(amount)))
    if len(digits) <= 3:
        return sign + digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return sign + ",".join(groups + [tail])


def get_prompt(key: str, language: str = "hi", **values) -> str:
    """Look up a prompt in the user's language (Hindi when unknown) and fill it in."""
    variants = PROMPTS[key]
    template = variants.get(language, variants["hi"])
    return template.format(**values) if values else template
