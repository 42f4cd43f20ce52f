from fastapi import APIRouter, Depends, Request

from aida.schemas.respond import HealthResponse, RespondRequest, RespondResponse, StatsResponse
from aida.services.orchestrator import ResponseOrchestrator

router = APIRouter()


def get_orchestrator(request: Request) -> ResponseOrchestrator:
    return request.app.state.orchestrator


@router.post("/respond", response_model=RespondResponse)
async def respond(payload: RespondRequest, orchestrator: ResponseOrchestrator = Depends(get_orchestrator)):
    """Generate a reply for one inbound customer message."""
    result = await orchestrator.generate_response(payload.to_domain())
    return RespondResponse.from_result(result)


@router.get("/stats", response_model=StatsResponse)
def stats(orchestrator: ResponseOrchestrator = Depends(get_orchestrator)):
    return StatsResponse(**orchestrator.get_stats().to_dict())


@router.get("/health", response_model=HealthResponse)
async def health(orchestrator: ResponseOrchestrator = Depends(get_orchestrator)):
    return HealthResponse(**await orchestrator.health_check())
