from typing import Iterable, Optional

from aida.services.content_service import extract_entities
from aida.services.response_types import AIResponse

ESCALATION_CONFIDENCE = 0.9
ESCALATION_INTENT = "escalation_request"
LONG_COMPLAINT_CHARS = 500
LONG_COMPLAINT_MARKER = "problem"

# Anger, frustration, legal threats, refunds and cancellations (EN + PT).
EMOTIONAL_INDICATORS = (
    "angry",
    "frustrated",
    "upset",
    "disappointed",
    "furious",
    "terrible",
    "awful",
    "horrible",
    "worst",
    "hate",
    "cancel",
    "refund",
    "complaint",
    "legal",
    "lawyer",
    "absurdo",
    "irritado",
    "revoltado",
    "péssimo",
    "horrível",
    "reembolso",
    "estorno",
    "reclamação",
    "advogado",
    "procon",
    "processar",
)

ESCALATION_RESPONSES = {
    "professional": (
        "I understand your concern requires special attention. Let me connect you with one of our "
        "team members who can provide personalized assistance."
    ),
    "friendly": "I can see this is important to you! Let me get one of our team members to help you right away.",
    "casual": "Got it! This sounds like something our team should handle directly. Let me get someone for you right now.",
}


def _matches_any(text: str, terms: Iterable[str]) -> bool:
    return any(term and term.lower() in text for term in terms)


def should_escalate(message: str, escalation_keywords: Optional[Iterable[str]] = None) -> bool:
    """
    Decide whether a message goes straight to a human.

    Any one of: a caller keyword, an emotional indicator, or a long message
    (>500 chars) mentioning "problem".
    """
    lowered = (message or "").lower()

    if _matches_any(lowered, escalation_keywords or ()):
        return True

    if _matches_any(lowered, EMOTIONAL_INDICATORS):
        return True

    return len(message or "") > LONG_COMPLAINT_CHARS and LONG_COMPLAINT_MARKER in lowered


def build_escalation_response(message: str, response_style: str = "professional", elapsed_ms: float = 0.0) -> AIResponse:
    """Canned hand-off reply used instead of calling the LLM."""
    content = ESCALATION_RESPONSES.get(response_style, ESCALATION_RESPONSES["professional"])
    return AIResponse(
        content=content,
        confidence=ESCALATION_CONFIDENCE,
        sources=[],
        processing_time_ms=elapsed_ms,
        should_escalate=True,
        intent=ESCALATION_INTENT,
        entities=extract_entities(message),
    )
