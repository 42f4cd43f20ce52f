from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from aida.services.errors import ErrorType
from aida.services.response_types import CustomerMetadata, ResponseRequest, ResponseResult


class CustomerMetadataIn(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    language: Optional[str] = None
    sentiment: Optional[Literal["positive", "neutral", "negative"]] = None


class ProcessingOptionsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    include_rag: Optional[bool] = None
    use_memory: Optional[bool] = None
    max_context_length: Optional[int] = Field(default=None, gt=0)
    confidence_threshold: Optional[float] = Field(default=None, ge=0, le=1)
    escalation_keywords: Optional[List[str]] = None
    response_style: Optional[Literal["professional", "friendly", "casual"]] = None


class RespondRequest(BaseModel):
    # Content rules (non-empty, length, ids) are enforced by the orchestrator
    # so they come back as a typed validation result.
    message: str
    conversation_id: str
    assistant_id: str
    business_id: str
    customer_metadata: Optional[CustomerMetadataIn] = None
    processing_options: Optional[ProcessingOptionsIn] = None

    def to_domain(self) -> ResponseRequest:
        metadata = None
        if self.customer_metadata is not None:
            metadata = CustomerMetadata(**self.customer_metadata.model_dump())
        options = None
        if self.processing_options is not None:
            options = self.processing_options.model_dump(exclude_none=True)
        return ResponseRequest(
            message=self.message,
            conversation_id=self.conversation_id,
            assistant_id=self.assistant_id,
            business_id=self.business_id,
            customer_metadata=metadata,
            processing_options=options,
        )


class SourceOut(BaseModel):
    content: str
    score: float
    source: Optional[str] = None
    source_id: Optional[str] = None


class AIResponseOut(BaseModel):
    content: str
    confidence: float
    sources: List[SourceOut] = []
    processing_time_ms: float
    should_escalate: bool
    intent: str
    entities: Dict[str, List[str]] = {}
    tokens_used: int = 0
    metadata: Dict[str, Any] = {}


class ResponsePayloadOut(BaseModel):
    content: AIResponseOut
    formatted_messages: List[str]
    processing_time_ms: float
    confidence: float
    should_escalate: bool


class ErrorOut(BaseModel):
    type: ErrorType
    message: str


class ResultMetadataOut(BaseModel):
    request_id: str
    timestamp: datetime
    assistant_id: str
    conversation_id: str
    fallback_used: bool = False


class RespondResponse(BaseModel):
    success: bool
    metadata: ResultMetadataOut
    response: Optional[ResponsePayloadOut] = None
    error: Optional[ErrorOut] = None

    @classmethod
    def from_result(cls, result: ResponseResult) -> "RespondResponse":
        return cls.model_validate(asdict(result))


class StatsResponse(BaseModel):
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_processing_time_ms: float
    average_confidence: float
    escalation_rate: float
    fallback_rate: float
    escalations: int
    fallback_responses: int
    content_filtered: int
    fact_checked: int
    low_confidence: int


class HealthResponse(BaseModel):
    status: str
    components: Dict[str, bool]
    in_flight_requests: int
