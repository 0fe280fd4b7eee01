# innovation_agent/main.py
import logging
from contextlib import asynccontextmanager

from configs.config import Config
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from innovation_agent.routes import generation, problems
from innovation_agent.services.llm_service import LLMService
from innovation_agent.services.persistence import build_identity, build_store
from innovation_agent.services.pipeline import SubmissionPipeline
from innovation_agent.services.progress import ProgressBoard

logging.basicConfig(
    level=logging.DEBUG if Config.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api"
GENERATION_PATH = f"{API_PREFIX}{generation.GENERATE_PATH}"


class ScopedCORSMiddleware:
    """Starlette CORS handling for every path except ``exclude_paths``."""

    def __init__(self, app: ASGIApp, exclude_paths: tuple[str, ...] = (), **options) -> None:
        self.app = app
        self.cors = CORSMiddleware(app, **options)
        self.exclude_paths = frozenset(exclude_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"] in self.exclude_paths:
            await self.app(scope, receive, send)
            return
        await self.cors(scope, receive, send)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared services for this process and close them on shutdown."""
    app.state.store = build_store()
    app.state.identity = build_identity()
    app.state.llm_service = LLMService()
    app.state.progress = ProgressBoard()
    app.state.pipeline = SubmissionPipeline(
        store=app.state.store,
        llm_service=app.state.llm_service,
        progress=app.state.progress,
    )
    logger.info(
        "Innovation Agent ready (persistence=%s, progress=%s, model=%s)",
        Config.PERSISTENCE_BACKEND,
        Config.PROGRESS_MODE,
        Config.OPENAI_MODEL if Config.OPENAI_API_KEY else "fallback only",
    )
    try:
        yield
    finally:
        await app.state.pipeline.aclose()
        await app.state.progress.aclose()
        await app.state.llm_service.aclose()
        await app.state.identity.aclose()
        await app.state.store.aclose()


app = FastAPI(
    title="Innovation Agent API",
    lifespan=lifespan,
)

# CORS Configuration; the generation endpoint answers its own preflight
app.add_middleware(
    ScopedCORSMiddleware,
    exclude_paths=(GENERATION_PATH,),
    allow_origins=Config.ALLOWED_ORIGINS,
    allow_credentials="*" not in Config.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(generation.router, prefix=API_PREFIX)
app.include_router(problems.router, prefix="/api/problems")

@app.get("/")
async def root():
    return {"message": "Innovation Agent API is running"}

@app.get("/health")
async def health_check():
    return {"status": "healthy"}
