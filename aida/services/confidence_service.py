from typing import Sequence

from aida.services.response_types import KnowledgeSource

BASE_CONFIDENCE = 0.8
SOURCE_BOOST_WEIGHT = 0.2
SHORT_RESPONSE_CHARS = 50
SHORT_RESPONSE_PENALTY = 0.9
HEDGING_PENALTY = 0.7

HEDGING_PHRASES = (
    "i think",
    "maybe",
    "possibly",
    "not sure",
    "don't know",
)


def has_hedging(text: str) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in HEDGING_PHRASES)


def score_confidence(text: str, sources: Sequence[KnowledgeSource]) -> float:
    """
    Heuristic confidence for a generated answer.

    Base 0.8, plus 0.2 * mean source score (capped at 1.0), then x0.9 for
    answers under 50 chars and x0.7 for hedging. Rounded to 2 decimals.
    """
    confidence = BASE_CONFIDENCE

    if sources:
        mean_score = sum(source.score or 0.0 for source in sources) / len(sources)
        confidence = min(confidence + mean_score * SOURCE_BOOST_WEIGHT, 1.0)

    if len(text or "") < SHORT_RESPONSE_CHARS:
        confidence *= SHORT_RESPONSE_PENALTY

    if has_hedging(text):
        confidence *= HEDGING_PENALTY

    confidence = max(0.0, min(confidence, 1.0))
    return round(confidence, 2)
