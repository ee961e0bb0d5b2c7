from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from chatcontext.agents.orchestrator import RetrievalOrchestrator
from chatcontext.clients.perplexity import PerplexityClient
from chatcontext.clients.scraper import ScraperServiceClient
from chatcontext.clients.vector_search import SupabaseVectorSearch
from chatcontext.core.cache import CacheStore
from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.deadline import cancel_background, pending_background
from chatcontext.core.exceptions import ConfigurationError
from chatcontext.core.logging_setup import configure_logging
from chatcontext.core.middleware import RequestIDMiddleware
from chatcontext.core.openai_client import close_openai_client
from chatcontext.tools.deep_research import DeepResearchFetcher
from chatcontext.tools.knowledge_base import KnowledgeBaseFetcher
from chatcontext.tools.web_scraper import WebScraperFetcher

logger = structlog.get_logger(__name__)


def build_orchestrator(cache: CacheStore, settings: Settings) -> RetrievalOrchestrator:
    """Wire a fetcher for every source whose credentials are present.

    A source without credentials is left out and skipped as not configured.
    """
    knowledge_base = web_scraper = deep_research = None
    try:
        knowledge_base = KnowledgeBaseFetcher(cache, SupabaseVectorSearch(settings), settings)
    except ConfigurationError as exc:
        logger.warning("app.startup.source_disabled", source="knowledge_base", reason=str(exc))
    try:
        web_scraper = WebScraperFetcher(cache, ScraperServiceClient(settings), settings)
    except ConfigurationError as exc:
        logger.warning("app.startup.source_disabled", source="web_scraper", reason=str(exc))
    try:
        deep_research = DeepResearchFetcher(cache, PerplexityClient(settings), settings)
    except ConfigurationError as exc:
        logger.warning("app.startup.source_disabled", source="deep_research", reason=str(exc))
    return RetrievalOrchestrator(knowledge_base, web_scraper, deep_research, settings)


def create_app(
    settings: Settings | None = None,
    *,
    cache: CacheStore | None = None,
    orchestrator: RetrievalOrchestrator | None = None,
) -> FastAPI:
    """Build the app. Pre-built ``cache``/``orchestrator`` skip startup wiring."""
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE, environment=settings.ENVIRONMENT)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app.startup", environment=settings.ENVIRONMENT)
        store = cache or await CacheStore.connect(settings)
        app.state.cache = store
        app.state.orchestrator = orchestrator or build_orchestrator(store, settings)
        logger.info("app.startup.cache_ready", backend=store.backend_name)

        yield

        logger.info("app.shutdown", abandoned_operations=pending_background())
        await cancel_background()
        await store.close()
        await close_openai_client()

    app = FastAPI(
        title="ChatContext API",
        description="Request-scoped retrieval context assembly for chat turns",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(RequestIDMiddleware)

    from chatcontext.api.v1 import context, debug

    app.include_router(context.router, prefix="/api/v1/context", tags=["context"])
    app.include_router(debug.router, prefix="/api/v1/debug", tags=["debug"])

    @app.get("/health")
    async def health_check(request: Request):
        """Liveness plus the cache backend in use.

        ``degraded`` means a shared cache was configured but the process runs on
        the in-memory fallback; the service still answers.
        """
        store: CacheStore = request.app.state.cache
        degraded = bool(settings.REDIS_URL) and store.backend_name != "redis"
        body = {
            "status": "degraded" if degraded else "healthy",
            "cache_backend": store.backend_name,
            "abandoned_operations": pending_background(),
        }
        return JSONResponse(content=body, status_code=200)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
