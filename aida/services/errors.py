from enum import Enum


class ErrorType(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CONTENT_FILTER = "content_filter"  # quality flag only, never a failed result
    PROCESSING = "processing"
    UNKNOWN = "unknown"


class OrchestrationError(Exception):
    """Base class for errors that abort the response pipeline."""

    error_type = ErrorType.PROCESSING


class RequestValidationError(OrchestrationError):
    error_type = ErrorType.VALIDATION


class ContextNotFoundError(OrchestrationError):
    error_type = ErrorType.NOT_FOUND

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")
