from dataclasses import replace

from aida.logging_config import get_logger
from aida.services.content_service import (
    apply_fact_check,
    build_content_filter_response,
    filter_content,
    personalize_response,
)
from aida.services.response_types import AIResponse, ConversationContext, ProcessingOptions, ResponseRequest

logger = get_logger("postprocess_service")


class ResponsePostProcessor:
    """Runs filter, fact-check, personalization and threshold checks in that order.

    Each stage can be switched off; the threshold check always runs last so it
    sees the final confidence. Quality flags are recorded in response.metadata.
    """

    def __init__(
        self,
        enable_content_filter: bool = True,
        enable_fact_checking: bool = True,
        enable_personalization: bool = True,
    ):
        self.enable_content_filter = enable_content_filter
        self.enable_fact_checking = enable_fact_checking
        self.enable_personalization = enable_personalization

    def process(
        self,
        response: AIResponse,
        request: ResponseRequest,
        context: ConversationContext,
        options: ProcessingOptions,
    ) -> AIResponse:
        working = replace(response, metadata=dict(response.metadata))

        if self.enable_content_filter:
            check = filter_content(working.content)
            if not check.is_appropriate:
                logger.warning(
                    f"Content filtered for conversation {request.conversation_id}: {check.reason}",
                    extra={"context": {"conversation_id": request.conversation_id, "reason": check.reason}},
                )
                substitute = build_content_filter_response()
                substitute.processing_time_ms = working.processing_time_ms
                substitute.metadata = dict(working.metadata)
                working = substitute
                working.metadata["content_filtered"] = True

        if self.enable_fact_checking and apply_fact_check(working):
            working.metadata["fact_checked"] = True

        if self.enable_personalization:
            working.content = personalize_response(working.content, context.customer_profile.name)

        if working.confidence < options.confidence_threshold:
            working.should_escalate = True
            working.metadata["low_confidence"] = True

        return working
