"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clipsmith.acquisition import build_media_acquisition
from clipsmith.api.routes import router
from clipsmith.config import settings
from clipsmith.db.database import async_session_maker, close_db, init_db
from clipsmith.pipeline.orchestrator import Orchestrator
from clipsmith.pipeline.render import RenderPipeline
from clipsmith.services.job_service import JobService
from clipsmith.transcription import build_transcription_adapter
from clipsmith.workers.job_runner import JobRunner
from clipsmith.workspace import WorkspaceManager

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_orchestrator(session_maker=None, workspace: WorkspaceManager = None) -> Orchestrator:
    """Wire the pipeline stages from settings."""
    return Orchestrator(
        session_maker=session_maker or async_session_maker,
        acquisition=build_media_acquisition(settings),
        transcriber=build_transcription_adapter(settings),
        renderer=RenderPipeline(),
        workspace=workspace or WorkspaceManager(settings.workspace_dir, settings.cleanup_delay_seconds),
        step_fraction=settings.highlight_step_fraction,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.app_name}...")

    await init_db()
    logger.info("Database initialized")

    workspace = WorkspaceManager(settings.workspace_dir, settings.cleanup_delay_seconds)
    await workspace.sweep_expired()

    orchestrator = build_orchestrator(workspace=workspace)
    job_runner = JobRunner(orchestrator)

    app.state.workspace = workspace
    app.state.job_runner = job_runner
    app.state.job_service = JobService(orchestrator, job_runner, workspace)

    if not settings.groq_api_key:
        logger.warning("GROQ_API_KEY is not set; transcription will fail")

    resumed = await orchestrator.resume_incomplete()
    for job_id in resumed:
        await job_runner.start_job(job_id)
    if resumed:
        logger.info(f"Resumed {len(resumed)} interrupted jobs")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await job_runner.shutdown()
    await workspace.shutdown()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Turns long-form videos into ranked, captioned short clips",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "api": "/api",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clipsmith.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
