from enum import Enum
from typing import List, Optional


class PipelineState(str, Enum):
    RECEIVED = "received"
    CONTEXT_LOADED = "context_loaded"
    ESCALATED = "escalated"
    GENERATED = "generated"
    POST_PROCESSED = "post_processed"
    FORMATTED = "formatted"
    PERSISTED = "persisted"
    DONE = "done"
    ERRORED = "errored"


TERMINAL_STATES = {PipelineState.DONE, PipelineState.ERRORED}

VALID_TRANSITIONS = {
    PipelineState.RECEIVED: [PipelineState.CONTEXT_LOADED],
    PipelineState.CONTEXT_LOADED: [PipelineState.ESCALATED, PipelineState.GENERATED],
    PipelineState.ESCALATED: [PipelineState.POST_PROCESSED],
    PipelineState.GENERATED: [PipelineState.POST_PROCESSED],
    PipelineState.POST_PROCESSED: [PipelineState.FORMATTED],
    PipelineState.FORMATTED: [PipelineState.PERSISTED],
    PipelineState.PERSISTED: [PipelineState.DONE],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: PipelineState, to_state: PipelineState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: PipelineState, to_state: PipelineState) -> bool:
    """Check if transition is valid. Any non-terminal state may error out."""
    if from_state in TERMINAL_STATES:
        return False
    if to_state == PipelineState.ERRORED:
        return True
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: PipelineState, to_state: PipelineState) -> PipelineState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


class PipelineRun:
    """Tracks the state of a single request through the pipeline."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.state = PipelineState.RECEIVED
        self.history: List[PipelineState] = [PipelineState.RECEIVED]
        self.error: Optional[str] = None

    def advance(self, to_state: PipelineState) -> PipelineState:
        self.state = transition(self.state, to_state)
        self.history.append(self.state)
        return self.state

    def fail(self, error: str) -> PipelineState:
        self.error = error
        return self.advance(PipelineState.ERRORED)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES
