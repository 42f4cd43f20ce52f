"""Domain types shared by the response pipeline stages."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from aida.services.errors import ErrorType

Sentiment = str  # positive, neutral, negative
ResponseStyle = str  # professional, friendly, casual

RESPONSE_STYLES = ("professional", "friendly", "casual")


@dataclass(frozen=True)
class CustomerMetadata:
    name: Optional[str] = None
    phone: Optional[str] = None
    language: Optional[str] = None
    sentiment: Optional[Sentiment] = None

@dataclass(frozen=True)
class ResponseRequest:
    message: str
    conversation_id: str
    assistant_id: str
    business_id: str
    customer_metadata: Optional[CustomerMetadata] = None
    processing_options: Optional[Mapping[str, Any]] = None

@dataclass
class ProcessingOptions:
    include_rag: bool = True
    use_memory: bool = True
    max_context_length: int = 500
    confidence_threshold: float = 0.7
    escalation_keywords: List[str] = field(default_factory=list)
    response_style: ResponseStyle = "friendly"

@dataclass
class AssistantRecord:
    id: str
    business_id: str
    name: str
    personality_prompt: str = ""
    system_prompt: str = ""
    settings: Dict[str, Any] = field(default_factory=dict)
    metrics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AssistantRecord":
        return cls(
            id=str(row["id"]),
            business_id=str(row.get("business_id") or ""),
            name=row.get("name") or "Assistant",
            personality_prompt=row.get("personality_prompt") or "",
            system_prompt=row.get("system_prompt") or "",
            settings=dict(row.get("settings") or {}),
            metrics=dict(row.get("metrics") or {}),
        )

@dataclass
class ConversationRecord:
    id: str
    business_id: str
    assistant_id: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    status: str = "active"
    context_summary: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ConversationRecord":
        assistant_id = row.get("assistant_id")
        return cls(
            id=str(row["id"]),
            business_id=str(row.get("business_id") or ""),
            assistant_id=str(assistant_id) if assistant_id else None,
            customer_phone=row.get("customer_phone"),
            customer_name=row.get("customer_name"),
            status=row.get("status") or "active",
            context_summary=row.get("context_summary") or "",
        )

@dataclass
class CustomerProfile:
    name: Optional[str] = None
    phone: Optional[str] = None
    previous_interactions: int = 0
    sentiment: Sentiment = "neutral"
    preferred_language: str = "pt"

@dataclass
class ConversationContext:
    assistant: AssistantRecord
    conversation: ConversationRecord
    business_id: str
    customer_profile: CustomerProfile
    history: List[Dict[str, str]] = field(default_factory=list)

@dataclass
class KnowledgeSource:
    content: str
    score: float
    source: Optional[str] = None
    source_id: Optional[str] = None

@dataclass
class AIResponse:
    content: str
    confidence: float
    sources: List[KnowledgeSource] = field(default_factory=list)
    processing_time_ms: float = 0.0
    should_escalate: bool = False
    intent: str = "general_inquiry"
    entities: Dict[str, List[str]] = field(default_factory=dict)
    tokens_used: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

@dataclass
class ResponsePayload:
    content: AIResponse
    formatted_messages: List[str]
    processing_time_ms: float
    confidence: float
    should_escalate: bool

@dataclass
class ResponseError:
    type: ErrorType
    message: str

@dataclass
class ResponseMetadata:
    request_id: str
    timestamp: datetime
    assistant_id: str
    conversation_id: str
    fallback_used: bool = False

@dataclass
class ResponseResult:
    success: bool
    metadata: ResponseMetadata
    response: Optional[ResponsePayload] = None
    error: Optional[ResponseError] = None
