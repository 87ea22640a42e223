"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reelsmith import __version__
from reelsmith.config import settings
from reelsmith.db.database import init_db, close_db
from reelsmith.api.routes import router
from reelsmith.pipeline.clip_renderer import ClipRenderer
from reelsmith.services.credit_service import CreditLedger
from reelsmith.services.genai_client import GenAIClient
from reelsmith.services.highlight_service import HighlightService
from reelsmith.services.project_service import ProjectMirror
from reelsmith.services.storage_service import LocalObjectStore
from reelsmith.workers.events import EventBroadcaster
from reelsmith.workers.handlers import HighlightPipeline
from reelsmith.workers.job_store import JobStore
from reelsmith.workers.orchestrator import HighlightOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Reelsmith...")

    await init_db()
    logger.info("Database initialized")

    storage = LocalObjectStore()
    pipeline = HighlightPipeline(
        storage=storage,
        genai_client=GenAIClient(),
        renderer=ClipRenderer(storage),
    )
    events = EventBroadcaster()
    mirror = ProjectMirror()
    orchestrator = HighlightOrchestrator(
        store=JobStore(),
        handler=pipeline,
        events=events,
        mirror=mirror,
    )
    ledger = CreditLedger()

    app.state.storage = storage
    app.state.events = events
    app.state.mirror = mirror
    app.state.orchestrator = orchestrator
    app.state.ledger = ledger
    app.state.highlight_service = HighlightService(orchestrator, ledger, storage, mirror=mirror)

    await orchestrator.start()
    logger.info(f"Orchestrator started ({orchestrator.max_concurrent_jobs} slots)")

    yield

    # Shutdown
    logger.info("Shutting down Reelsmith...")
    await orchestrator.shutdown()
    await storage.close()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Highlight clip extraction service",
    version=__version__,
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
        "version": __version__,
        "api": "/api",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "reelsmith.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
