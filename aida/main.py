import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aida.config import settings
from aida.logging_config import get_logger, setup_logging
from aida.routers import respond
from aida.services.formatter_service import WhatsAppFormatter
from aida.services.knowledge_service import QdrantRetriever
from aida.services.llm import create_llm_provider
from aida.services.orchestrator import ResponseOrchestrator
from aida.services.storage_service import SqlStorage

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="AIDA Responder",
    description="Response orchestration service for AIDA virtual assistants",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(respond.router)


def build_orchestrator() -> ResponseOrchestrator:
    return ResponseOrchestrator(
        storage=SqlStorage(),
        retriever=QdrantRetriever(),
        llm_provider=create_llm_provider(settings),
        formatter=WhatsAppFormatter(),
        settings=settings,
    )


@app.on_event("startup")
async def init_orchestrator() -> None:
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator()
        logger.info(
            "Orchestrator started",
            extra={"context": {"llm_provider": settings.llm_provider, "model": settings.llm_model}},
        )


@app.on_event("shutdown")
async def flush_alerts() -> None:
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None and orchestrator.pending_alerts:
        logger.info(f"Waiting for {orchestrator.pending_alerts} pending alerts")
        await orchestrator.drain_alerts()
