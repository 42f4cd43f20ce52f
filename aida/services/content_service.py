import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from aida.services.response_types import AIResponse

VERIFICATION_DISCLAIMER = "\n\nPlease verify this information with our team if needed."
FACT_CHECK_CONFIDENCE = 0.6
FACT_CHECK_FLOOR = 0.4

CONTENT_FILTER_RESPONSE = (
    "I apologize, but I need to connect you with one of our team members "
    "to better assist you with this request."
)
CONTENT_FILTER_CONFIDENCE = 0.5

_SENSITIVE_PATTERNS = (
    ("credentials", re.compile(r"\b(password|passwd|senha|token|api[_\s-]?key|secret[_\s-]?key)\b", re.IGNORECASE)),
    ("payment_card", re.compile(r"\b(credit[_\s-]?card|card[_\s-]?number|cvv|ssn)\b", re.IGNORECASE)),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
)
_CARD_NUMBER_RE = re.compile(r"\b(?:\d{4}[ -]?){3}\d{3,4}\b")

_INTENT_PATTERNS = (
    ("pricing_inquiry", re.compile(r"\b(price|prices|pricing|cost|costs|quanto|preço|preco|valor)\b")),
    ("business_hours", re.compile(r"\b(hours|open|opening|horários?|horarios?|abre|fecha)\b")),
    ("location_inquiry", re.compile(r"\b(location|address|where|onde|endereço|endereco)\b")),
    ("greeting", re.compile(r"\b(hello|hi|hey|olá|ola|oi|bom dia|boa tarde|boa noite)\b")),
    ("help_request", re.compile(r"\b(help|support|ajuda|suporte)\b")),
)

_PHONE_RE = re.compile(r"\+?[1-9]\d{7,14}")
_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_MONEY_RE = re.compile(
    r"(?:R\$|\$)\s?\d+(?:[.,]\d{2})?|\d+(?:[.,]\d{2})?\s*(?:reais|real|dollars?)\b",
    re.IGNORECASE,
)


@dataclass
class FilterResult:
    is_appropriate: bool
    reason: Optional[str] = None


def _passes_luhn(digits: str) -> bool:
    total = 0
    for index, char in enumerate(reversed(digits)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def _contains_card_number(content: str) -> bool:
    for match in _CARD_NUMBER_RE.finditer(content):
        digits = re.sub(r"\D", "", match.group(0))
        if _passes_luhn(digits):
            return True
    return False


def filter_content(content: str) -> FilterResult:
    """Reject responses that look like they leak credentials or payment data."""
    content = content or ""
    for reason, pattern in _SENSITIVE_PATTERNS:
        if pattern.search(content):
            return FilterResult(is_appropriate=False, reason=reason)
    if _contains_card_number(content):
        return FilterResult(is_appropriate=False, reason="card_number")
    return FilterResult(is_appropriate=True)


def build_content_filter_response() -> AIResponse:
    return AIResponse(
        content=CONTENT_FILTER_RESPONSE,
        confidence=CONTENT_FILTER_CONFIDENCE,
        sources=[],
        processing_time_ms=0.0,
        should_escalate=True,
        intent="fallback",
        entities={},
    )


def apply_fact_check(response: AIResponse) -> bool:
    """Append disclaimer to low-confidence answers. Returns True if applied."""
    if response.confidence >= FACT_CHECK_CONFIDENCE:
        return False
    response.content = f"{response.content}{VERIFICATION_DISCLAIMER}"
    response.confidence = max(response.confidence, FACT_CHECK_FLOOR)
    return True


def personalize_response(content: str, customer_name: Optional[str]) -> str:
    name = (customer_name or "").strip()
    if not name:
        return content
    if name.lower() in (content or "").lower():
        return content
    return f"{name}, {content}"


def extract_intent(message: str) -> str:
    lowered = (message or "").lower()
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(lowered):
            return intent
    return "general_inquiry"


def extract_entities(message: str) -> Dict[str, List[str]]:
    entities: Dict[str, List[str]] = {}
    text = message or ""

    emails = _EMAIL_RE.findall(text)
    if emails:
        entities["emails"] = emails

    phones = _PHONE_RE.findall(_EMAIL_RE.sub(" ", text))
    if phones:
        entities["phone_numbers"] = phones

    amounts = _MONEY_RE.findall(text)
    if amounts:
        entities["monetary_amounts"] = amounts

    return entities
