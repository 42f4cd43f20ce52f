from aida.services.errors import ContextNotFoundError, ErrorType, OrchestrationError, RequestValidationError
from aida.services.orchestrator import ResponseOrchestrator, generate_request_id
from aida.services.response_types import (
    AIResponse,
    CustomerMetadata,
    ProcessingOptions,
    ResponseRequest,
    ResponseResult,
)
from aida.services.result import Result
from aida.services.state_machine import (
    InvalidTransitionError,
    PipelineRun,
    PipelineState,
    can_transition,
    transition,
)

__all__ = [
    "AIResponse",
    "ContextNotFoundError",
    "CustomerMetadata",
    "ErrorType",
    "InvalidTransitionError",
    "OrchestrationError",
    "PipelineRun",
    "PipelineState",
    "ProcessingOptions",
    "RequestValidationError",
    "ResponseOrchestrator",
    "ResponseRequest",
    "ResponseResult",
    "Result",
    "can_transition",
    "generate_request_id",
    "transition",
]
