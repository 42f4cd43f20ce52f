from aida.schemas.respond import HealthResponse, ProcessingOptionsIn, RespondRequest, RespondResponse, StatsResponse

__all__ = ["ProcessingOptionsIn", "RespondRequest", "RespondResponse", "StatsResponse", "HealthResponse"]
