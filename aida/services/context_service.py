from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from aida.logging_config import get_logger
from aida.services.errors import ContextNotFoundError
from aida.services.response_types import (
    AssistantRecord,
    ConversationContext,
    ConversationRecord,
    CustomerMetadata,
    CustomerProfile,
    ResponseRequest,
)
from aida.services.storage_service import Row, Storage

logger = get_logger("context_service")

SENTIMENT_WINDOW = 5
SUMMARY_MIN_MESSAGE_CHARS = 50
SUMMARY_MAX_CHARS = 500
SUMMARY_EXCERPT_CHARS = 100
DEFAULT_HISTORY_MESSAGES = 10
DEFAULT_LANGUAGE = "pt"

POSITIVE_WORDS = (
    "good",
    "great",
    "excellent",
    "happy",
    "satisfied",
    "love",
    "thanks",
    "bom",
    "ótimo",
    "otimo",
    "excelente",
    "feliz",
    "satisfeito",
    "adorei",
    "obrigado",
    "obrigada",
)

NEGATIVE_WORDS = (
    "bad",
    "terrible",
    "awful",
    "angry",
    "frustrated",
    "hate",
    "ruim",
    "péssimo",
    "pessimo",
    "horrível",
    "horrivel",
    "irritado",
    "frustrado",
    "odeio",
)

_HISTORY_ROLES = {"customer": "user", "assistant": "assistant"}


def analyze_sentiment(messages: Iterable[str]) -> str:
    """Keyword vote over recent messages. Ties resolve to neutral."""
    positive = 0
    negative = 0
    for message in messages:
        lowered = (message or "").lower()
        positive += sum(1 for word in POSITIVE_WORDS if word in lowered)
        negative += sum(1 for word in NEGATIVE_WORDS if word in lowered)

    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def _message_time(row: Row) -> datetime:
    value = row.get("timestamp")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return datetime.min.replace(tzinfo=timezone.utc)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.min.replace(tzinfo=timezone.utc)


def build_customer_profile(
    message_rows: List[Row],
    customer_metadata: Optional[CustomerMetadata],
    default_language: str = DEFAULT_LANGUAGE,
) -> CustomerProfile:
    metadata = customer_metadata or CustomerMetadata()
    customer_messages = [row for row in message_rows if row.get("sender_type") == "customer"]
    recent = sorted(customer_messages, key=_message_time, reverse=True)[:SENTIMENT_WINDOW]
    sentiment = analyze_sentiment(row.get("content") or "" for row in recent)

    return CustomerProfile(
        name=metadata.name,
        phone=metadata.phone,
        previous_interactions=len(customer_messages),
        sentiment=metadata.sentiment or sentiment,
        preferred_language=metadata.language or default_language,
    )


def update_conversation_summary(current_summary: str, new_message: str) -> str:
    addition = f". Latest: {new_message[:SUMMARY_EXCERPT_CHARS]}"
    current_summary = current_summary or ""
    if len(current_summary) + len(addition) > SUMMARY_MAX_CHARS:
        return current_summary[: max(SUMMARY_MAX_CHARS - len(addition), 0)] + addition
    return current_summary + addition


def build_history(message_rows: List[Row], limit: int = DEFAULT_HISTORY_MESSAGES) -> List[Dict[str, str]]:
    """Chronological user/assistant turns, newest `limit` kept."""
    ordered = sorted(message_rows, key=_message_time)
    history = []
    for row in ordered:
        role = _HISTORY_ROLES.get(row.get("sender_type"))
        content = row.get("content")
        if role and content:
            history.append({"role": role, "content": content})
    if limit <= 0:
        return []
    return history[-limit:]


class ContextAggregator:
    """Loads assistant, conversation and customer profile for one request."""

    def __init__(
        self,
        storage: Storage,
        default_language: str = DEFAULT_LANGUAGE,
        history_messages: int = DEFAULT_HISTORY_MESSAGES,
    ):
        self.storage = storage
        self.default_language = default_language
        self.history_messages = history_messages

    async def load(self, request: ResponseRequest) -> ConversationContext:
        assistants = await self.storage.query(
            "assistants",
            {"id": request.assistant_id, "business_id": request.business_id, "is_active": True},
        )
        if not assistants:
            raise ContextNotFoundError("assistant", request.assistant_id)

        conversations = await self.storage.query(
            "conversations",
            {"id": request.conversation_id, "business_id": request.business_id},
        )
        if not conversations:
            raise ContextNotFoundError("conversation", request.conversation_id)

        message_rows = await self._load_messages(request.conversation_id)
        profile = build_customer_profile(message_rows, request.customer_metadata, self.default_language)

        return ConversationContext(
            assistant=AssistantRecord.from_row(assistants[0]),
            conversation=ConversationRecord.from_row(conversations[0]),
            business_id=request.business_id,
            customer_profile=profile,
            history=build_history(message_rows, self.history_messages),
        )

    async def _load_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        # Profile data is best effort; a failed read degrades to an empty history.
        try:
            return await self.storage.query("messages", {"conversation_id": conversation_id})
        except Exception as e:
            logger.warning(f"Failed to load messages for conversation {conversation_id}: {e}")
            return []

    async def record_summary(self, context: ConversationContext, message: str) -> bool:
        """Fold a significant message into the conversation summary. Never raises."""
        if len(message) <= SUMMARY_MIN_MESSAGE_CHARS:
            return False
        summary = update_conversation_summary(context.conversation.context_summary, message)
        try:
            await self.storage.update("conversations", context.conversation.id, {"context_summary": summary})
        except Exception as e:
            logger.warning(f"Conversation summary update failed for {context.conversation.id}: {e}")
            return False
        context.conversation.context_summary = summary
        return True
