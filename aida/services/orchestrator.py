"""Response orchestration: dedup -> timeout -> context -> generation -> post-processing -> format -> persist."""

import asyncio
import random
import string
import time
from dataclasses import asdict, fields
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Set

from aida.config import Settings
from aida.config import settings as default_settings
from aida.logging_config import LoggerAdapter, get_logger
from aida.services.alert_service import alert_error
from aida.services.confidence_service import score_confidence
from aida.services.content_service import extract_entities, extract_intent
from aida.services.context_service import ContextAggregator
from aida.services.dedup_service import HASH_MODES, RequestDeduplicator
from aida.services.errors import ErrorType, OrchestrationError, RequestValidationError
from aida.services.escalation_service import build_escalation_response, should_escalate
from aida.services.formatter_service import MessageFormatter, WhatsAppFormatter
from aida.services.knowledge_service import KnowledgeRetriever, format_knowledge_context
from aida.services.llm import LLMProvider
from aida.services.postprocess_service import ResponsePostProcessor
from aida.services.response_types import (
    RESPONSE_STYLES,
    AIResponse,
    ConversationContext,
    ProcessingOptions,
    ResponseError,
    ResponseMetadata,
    ResponsePayload,
    ResponseRequest,
    ResponseResult,
)
from aida.services.result import Result
from aida.services.state_machine import PipelineRun, PipelineState
from aida.services.stats_service import ResponseStats, StatsTracker
from aida.services.storage_service import Storage
from aida.services.timeout_service import TimeoutGuard

logger = get_logger("orchestrator")

MAX_MESSAGE_CHARS = 4000

FALLBACK_CONTENT = (
    "I apologize, but I'm experiencing some technical difficulties right now. "
    "Let me connect you with a human agent who can assist you better."
)
FALLBACK_CONFIDENCE = 0.3
FALLBACK_INTENT = "technical_error"

RAG_ERROR = "rag_error"
AI_ERROR = "ai_error"

_OPTION_FIELDS = {f.name for f in fields(ProcessingOptions)}
_REQUEST_ID_CHARS = string.ascii_lowercase + string.digits


def generate_request_id() -> str:
    suffix = "".join(random.choices(_REQUEST_ID_CHARS, k=9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def validate_request(request: ResponseRequest) -> None:
    """Raise RequestValidationError for requests that must not reach any collaborator."""
    message = request.message or ""
    if not message.strip():
        raise RequestValidationError("Message is required")
    if not request.conversation_id or not request.assistant_id or not request.business_id:
        raise RequestValidationError("Conversation ID, Assistant ID, and Business ID are required")
    if len(message) > MAX_MESSAGE_CHARS:
        raise RequestValidationError(f"Message too long (max {MAX_MESSAGE_CHARS} characters)")
    validate_processing_options(request.processing_options)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_processing_options(overrides: Optional[Mapping[str, Any]]) -> None:
    """Type-check request overrides. Unknown keys are left for resolve_options to ignore."""
    if overrides is None:
        return
    if not isinstance(overrides, Mapping):
        raise RequestValidationError("Processing options must be an object")

    for key, value in overrides.items():
        if key in ("include_rag", "use_memory"):
            valid = isinstance(value, bool)
            expected = "a boolean"
        elif key == "max_context_length":
            valid = isinstance(value, int) and not isinstance(value, bool) and value > 0
            expected = "a positive integer"
        elif key == "confidence_threshold":
            valid = _is_number(value) and 0 <= value <= 1
            expected = "a number between 0 and 1"
        elif key == "escalation_keywords":
            valid = isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value)
            expected = "a list of strings"
        elif key == "response_style":
            valid = isinstance(value, str)
            expected = "a string"
        else:
            continue
        if not valid:
            raise RequestValidationError(f"Processing option {key} must be {expected}")


def resolve_options(request: ResponseRequest, context: ConversationContext, settings: Settings) -> ProcessingOptions:
    """Request overrides win over assistant settings, which win over global settings."""
    assistant_settings = context.assistant.settings

    threshold = assistant_settings.get("confidence_threshold")
    values: Dict[str, Any] = {
        "max_context_length": assistant_settings.get("max_response_length") or settings.whatsapp_max_message_length,
        "confidence_threshold": threshold if threshold is not None else settings.confidence_threshold,
        "escalation_keywords": list(assistant_settings.get("escalation_keywords") or []),
        "response_style": assistant_settings.get("response_style") or settings.default_response_style,
    }

    for key, value in (request.processing_options or {}).items():
        if key not in _OPTION_FIELDS:
            logger.warning(f"Ignoring unknown processing option: {key}")
            continue
        values[key] = value

    options = ProcessingOptions(**values)
    if options.response_style not in RESPONSE_STYLES:
        logger.warning(f"Unknown response style {options.response_style!r}, using {settings.default_response_style}")
        options.response_style = settings.default_response_style
    return options


def build_system_prompt(context: ConversationContext, options: ProcessingOptions) -> str:
    assistant = context.assistant
    profile = context.customer_profile

    prompt = f"""You are {assistant.name}, an AI assistant for {context.business_id}.

PERSONALITY: {assistant.personality_prompt}

INSTRUCTIONS: {assistant.system_prompt}

BUSINESS CONTEXT:
- You represent this business and should provide helpful, accurate information
- Always maintain a {options.response_style} tone
- If you don't know something, say so honestly and offer to connect them with a human agent
- Keep responses concise but helpful (max {options.max_context_length} characters)

CUSTOMER CONTEXT:
- Customer name: {profile.name or "Not provided"}
- Previous interactions: {profile.previous_interactions}
- Current sentiment: {profile.sentiment}
- Preferred language: {profile.preferred_language}"""

    if options.include_rag:
        prompt += (
            "\n\nKNOWLEDGE BASE:\nUse the business information provided below to answer accurately. "
            "If it doesn't contain the answer, say so."
        )

    return prompt


def build_fallback_response(elapsed_ms: float = 0.0) -> AIResponse:
    return AIResponse(
        content=FALLBACK_CONTENT,
        confidence=FALLBACK_CONFIDENCE,
        sources=[],
        processing_time_ms=elapsed_ms,
        should_escalate=True,
        intent=FALLBACK_INTENT,
        entities={},
        metadata={"fallback": True},
    )


class ResponseOrchestrator:
    """Entry point for generating one assistant reply.

    Owns the in-flight map (via RequestDeduplicator) and the aggregate stats;
    create one instance per process and share it between callers.
    """

    def __init__(
        self,
        storage: Storage,
        retriever: KnowledgeRetriever,
        llm_provider: LLMProvider,
        formatter: Optional[MessageFormatter] = None,
        settings: Settings = default_settings,
        deduplicator: Optional[RequestDeduplicator] = None,
        timeout_guard: Optional[TimeoutGuard] = None,
        stats: Optional[StatsTracker] = None,
    ):
        self.settings = settings
        self.storage = storage
        self.retriever = retriever
        self.llm_provider = llm_provider
        self.formatter = formatter or WhatsAppFormatter()
        self.context_aggregator = ContextAggregator(storage, settings.default_language, settings.history_messages)
        self.deduplicator = deduplicator or RequestDeduplicator(settings.dedup_hash)
        self.timeout_guard = timeout_guard or TimeoutGuard(
            settings.response_timeout_seconds, settings.cancel_on_timeout
        )
        self.stats = stats or StatsTracker()
        self._alerts: Set[asyncio.Task] = set()
        self.post_processor = ResponsePostProcessor(
            enable_content_filter=settings.enable_content_filter,
            enable_fact_checking=settings.enable_fact_checking,
            enable_personalization=settings.enable_personalization,
        )

    async def generate_response(self, request: ResponseRequest) -> ResponseResult:
        """Produce a ResponseResult for one inbound message. Never raises."""
        request_id = generate_request_id()
        started = time.perf_counter()
        log = LoggerAdapter(
            logger,
            {"request_id": request_id, "conversation_id": getattr(request, "conversation_id", None)},
        )
        log.info("Generating response")

        try:
            validate_request(request)
        except RequestValidationError as e:
            log.warning(f"Invalid request: {e}")
            return self._finish(self._failure(request_id, request, ErrorType.VALIDATION, str(e)), request, log)

        try:
            return await self.deduplicator.submit(request, lambda: self._run(request, request_id, started, log))
        except Exception as e:
            log.exception(f"Unexpected orchestration error: {e}")
            result = self._failure(request_id, request, ErrorType.UNKNOWN, str(e))
            try:
                return self._finish(result, request, log)
            except Exception as finish_error:
                log.error(f"Failed to record failed result: {finish_error}")
                return result

    async def _run(self, request: ResponseRequest, request_id: str, started: float, log: LoggerAdapter) -> ResponseResult:
        run = PipelineRun(request_id)
        guarded = await self.timeout_guard.run(self._process(request, run, started, log))

        if guarded.ok:
            result = guarded.value
        else:
            if self.timeout_guard.cancel_on_timeout and not run.finished:
                run.fail(guarded.error)
            log.error(f"Pipeline timed out in state {run.state.value}")
            result = self._failure(request_id, request, ErrorType.TIMEOUT, guarded.error)

        log.info(
            "Timing",
            context={
                "stage": "total",
                "elapsed_ms": round(_elapsed_ms(started), 2),
                "state": run.state.value,
                "success": result.success,
            },
        )
        return self._finish(result, request, log)

    def _finish(self, result: ResponseResult, request: ResponseRequest, log: LoggerAdapter) -> ResponseResult:
        self.stats.record(result)
        if not result.success:
            self._send_alert(
                {
                    "request_id": result.metadata.request_id,
                    "conversation_id": getattr(request, "conversation_id", None),
                    "error_type": result.error.type.value,
                    "error": result.error.message[:200],
                },
                log,
            )
        return result

    def _send_alert(self, context: Dict[str, Any], log: LoggerAdapter) -> None:
        """Deliver the failure alert in the background; the caller never waits on it."""
        task = asyncio.ensure_future(alert_error("Response generation failed", context))
        self._alerts.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._alerts.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                log.error(f"Failed to send failure alert: {finished.exception()}")

        task.add_done_callback(_done)

    @property
    def pending_alerts(self) -> int:
        return len(self._alerts)

    async def drain_alerts(self) -> None:
        """Wait for alerts still being delivered."""
        if self._alerts:
            await asyncio.gather(*list(self._alerts), return_exceptions=True)

    async def _process(
        self,
        request: ResponseRequest,
        run: PipelineRun,
        started: float,
        log: LoggerAdapter,
    ) -> ResponseResult:
        try:
            context = await self.context_aggregator.load(request)
            run.advance(PipelineState.CONTEXT_LOADED)
            log.info("Timing", context={"stage": "context_load", "elapsed_ms": round(_elapsed_ms(started), 2)})

            await self.context_aggregator.record_summary(context, request.message)
            options = resolve_options(request, context, self.settings)

            fallback_used = False
            if should_escalate(request.message, options.escalation_keywords):
                log.info("Escalation triggered, skipping generation")
                response = build_escalation_response(request.message, options.response_style, _elapsed_ms(started))
                run.advance(PipelineState.ESCALATED)
            else:
                generated = await self._generate(request, context, options, started)
                if generated.ok:
                    response = generated.value
                else:
                    log.warning(f"Generation failed [{generated.error_code}]: {generated.error}; using fallback")
                    response = build_fallback_response(_elapsed_ms(started))
                    fallback_used = True
                run.advance(PipelineState.GENERATED)

            response = self.post_processor.process(response, request, context, options)
            run.advance(PipelineState.POST_PROCESSED)

            formatted = self.formatter.format(response, options.max_context_length, options.response_style)
            run.advance(PipelineState.FORMATTED)

            await self._persist(request, response, context, log)
            run.advance(PipelineState.PERSISTED)

            processing_time_ms = _elapsed_ms(started)
            run.advance(PipelineState.DONE)
            return ResponseResult(
                success=True,
                metadata=self._metadata(run.request_id, request, fallback_used),
                response=ResponsePayload(
                    content=response,
                    formatted_messages=formatted,
                    processing_time_ms=processing_time_ms,
                    confidence=response.confidence,
                    should_escalate=response.should_escalate,
                ),
            )
        except OrchestrationError as e:
            log.warning(f"Pipeline aborted in state {run.state.value}: {e}")
            run.fail(str(e))
            return self._failure(run.request_id, request, e.error_type, str(e))
        except Exception as e:
            log.exception(f"Pipeline failed in state {run.state.value}: {e}")
            run.fail(str(e))
            return self._failure(run.request_id, request, ErrorType.PROCESSING, str(e))

    async def _generate(
        self,
        request: ResponseRequest,
        context: ConversationContext,
        options: ProcessingOptions,
        started: float,
    ) -> Result[AIResponse]:
        sources = []
        if options.include_rag:
            try:
                sources = await self.retriever.search(
                    request.message,
                    request.business_id,
                    limit=self.settings.retrieval_limit,
                    min_score=self.settings.retrieval_min_score,
                )
            except Exception as e:
                return Result.from_exception(e, RAG_ERROR)

        history = context.history if options.use_memory else []
        try:
            llm_response = await self.llm_provider.generate(
                build_system_prompt(context, options),
                format_knowledge_context(sources),
                history,
                request.message,
            )
        except Exception as e:
            return Result.from_exception(e, AI_ERROR)

        content = (llm_response.content or "").strip()
        if not content:
            return Result.failure("LLM returned empty content", AI_ERROR)

        return Result.success(
            AIResponse(
                content=content,
                confidence=score_confidence(content, sources),
                sources=list(sources),
                processing_time_ms=_elapsed_ms(started),
                should_escalate=False,
                intent=extract_intent(request.message),
                entities=extract_entities(request.message),
                tokens_used=llm_response.tokens_used,
                metadata={"model": llm_response.model},
            )
        )

    async def _persist(
        self,
        request: ResponseRequest,
        response: AIResponse,
        context: ConversationContext,
        log: LoggerAdapter,
    ) -> bool:
        """Store both messages and bump assistant metrics. Failures are logged only."""
        now = datetime.now(timezone.utc)
        processing_time_ms = int(round(response.processing_time_ms))
        try:
            await self.storage.insert(
                "messages",
                {
                    "conversation_id": request.conversation_id,
                    "business_id": request.business_id,
                    "sender_type": "customer",
                    "content": request.message,
                    "message_type": "text",
                    "timestamp": now,
                    "is_processed": True,
                },
            )
            await self.storage.insert(
                "messages",
                {
                    "conversation_id": request.conversation_id,
                    "business_id": request.business_id,
                    "sender_type": "assistant",
                    "content": response.content,
                    "message_type": "text",
                    "timestamp": now,
                    "metadata": {
                        "confidence_score": response.confidence,
                        "intent": response.intent,
                        "entities": response.entities,
                        "processing_time_ms": processing_time_ms,
                        "sources": [asdict(source) for source in response.sources],
                    },
                    "is_processed": True,
                    "processing_time_ms": processing_time_ms,
                },
            )

            metrics = dict(context.assistant.metrics)
            total = int(metrics.get("total_messages") or 0)
            average = float(metrics.get("avg_response_time_ms") or 0)
            metrics["total_messages"] = total + 1
            metrics["avg_response_time_ms"] = round((average * total + processing_time_ms) / (total + 1))
            metrics["last_active_at"] = now.isoformat()
            await self.storage.update("assistants", context.assistant.id, {"metrics": metrics})
            context.assistant.metrics = metrics

            await self.storage.update("conversations", context.conversation.id, {"last_message_at": now})
        except Exception as e:
            log.error(f"Failed to store response: {e}")
            return False
        return True

    def _metadata(self, request_id: str, request: ResponseRequest, fallback_used: bool = False) -> ResponseMetadata:
        return ResponseMetadata(
            request_id=request_id,
            timestamp=datetime.now(timezone.utc),
            assistant_id=getattr(request, "assistant_id", None) or "",
            conversation_id=getattr(request, "conversation_id", None) or "",
            fallback_used=fallback_used,
        )

    def _failure(self, request_id: str, request: ResponseRequest, error_type: ErrorType, message: str) -> ResponseResult:
        return ResponseResult(
            success=False,
            metadata=self._metadata(request_id, request),
            error=ResponseError(type=error_type, message=message),
        )

    def get_stats(self) -> ResponseStats:
        return self.stats.snapshot()

    async def health_check(self) -> Dict[str, Any]:
        async def probe(name: str, check) -> bool:
            try:
                return bool(await check())
            except Exception as e:
                logger.warning(f"Health probe {name} failed: {e}")
                return False

        storage_ok, retriever_ok, llm_ok = await asyncio.gather(
            probe("storage", self.storage.health_check),
            probe("retriever", self.retriever.health_check),
            probe("llm", self.llm_provider.is_available),
        )
        components = {"storage": storage_ok, "retriever": retriever_ok, "llm": llm_ok}
        return {
            "status": "healthy" if all(components.values()) else "degraded",
            "components": components,
            "in_flight_requests": self.deduplicator.in_flight_count,
        }

    def update_config(self, **changes: Any) -> Settings:
        """Apply settings changes to this orchestrator and its components."""
        unknown = set(changes) - set(Settings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        if "dedup_hash" in changes and changes["dedup_hash"] not in HASH_MODES:
            raise ValueError(f"Unknown dedup hash mode: {changes['dedup_hash']}")

        self.settings = self.settings.model_copy(update=changes)
        s = self.settings

        self.timeout_guard.timeout_seconds = s.response_timeout_seconds
        self.timeout_guard.cancel_on_timeout = s.cancel_on_timeout
        self.deduplicator.hash_mode = s.dedup_hash
        self.context_aggregator.default_language = s.default_language
        self.context_aggregator.history_messages = s.history_messages
        self.post_processor.enable_content_filter = s.enable_content_filter
        self.post_processor.enable_fact_checking = s.enable_fact_checking
        self.post_processor.enable_personalization = s.enable_personalization

        logger.info(f"Orchestrator config updated: {sorted(changes)}")
        return s
