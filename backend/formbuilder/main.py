"""
Form Builder — FastAPI application entry point.
Structured logging, table creation and LLM provider validation at startup.
"""
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from formbuilder.config import settings
from formbuilder.core.logging import get_logger, setup_logging

# Initialize structured logging FIRST
setup_logging(level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
logger = get_logger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    from formbuilder.database.postgresql import create_tables, engine
    from formbuilder.forms.session_store import SessionStore

    logger.info("Starting Form Builder", extra={
        "event": "startup",
        "app_name": settings.APP_NAME,
        "environment": settings.APP_ENV,
    })

    app.state.session_store = SessionStore(ttl_seconds=settings.SESSION_IDLE_TTL_SECONDS)
    app.state.orchestrator = None
    app.state.llm_error = None

    try:
        await create_tables()
        logger.info("Database tables ready", extra={"event": "db_ready"})
    except Exception as e:
        logger.error(f"Database initialisation failed: {e}", extra={"event": "db_init_failed"})
        if settings.APP_ENV == "production":
            raise

    await _init_ai(app)

    yield

    await engine.dispose()
    logger.info("Application shutdown complete", extra={"event": "shutdown"})


async def _init_ai(app: FastAPI) -> None:
    """Build the configured LLM provider once and wire the orchestrator.

    A misconfigured provider disables AI features (routes answer 503) instead
    of preventing the form editor from starting.
    """
    from formbuilder.ai.orchestrator import FormMutationOrchestrator
    from formbuilder.ai.providers import ProviderConfigError, ProviderError, build_provider

    logger.info("LLM provider validation", extra={
        "event": "ai_validation_start",
        "provider": settings.llm_provider,
        "model": settings.active_llm_model,
        "temperature": settings.LLM_TEMPERATURE,
        "configured": settings.is_llm_configured,
    })

    try:
        provider = build_provider(settings)
    except ProviderConfigError as exc:
        app.state.llm_error = str(exc)
        logger.error(
            f"AI features disabled: {exc}",
            extra={"event": "ai_validation_failed", "provider": settings.llm_provider},
        )
        return

    app.state.llm_provider = provider
    app.state.orchestrator = FormMutationOrchestrator(
        provider, timeout_seconds=settings.LLM_TIMEOUT_SECONDS
    )

    # Only local backends are pinged at startup; hosted ones bill per call.
    if settings.llm_provider == "ollama":
        try:
            await asyncio.wait_for(
                provider.ping(), timeout=settings.LLM_HEALTHCHECK_TIMEOUT_SECONDS
            )
            logger.info("LLM provider reachable", extra={
                "event": "ai_validation_success",
                "provider": settings.llm_provider,
                "model": settings.active_llm_model,
            })
        except (ProviderError, asyncio.TimeoutError) as exc:
            logger.warning(
                f"LLM health check failed: {exc or 'timed out'}",
                extra={"event": "ai_health_check_failed", "provider": settings.llm_provider},
            )


# ── Application ──
app = FastAPI(
    title=settings.APP_NAME,
    version=APP_VERSION,
    lifespan=lifespan,
)

# ── CORS ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──
from formbuilder.ai.router import router as ai_router  # noqa: E402
from formbuilder.forms.router import router as forms_router, sessions_router  # noqa: E402

app.include_router(forms_router, prefix="/api/forms", tags=["Forms"])
app.include_router(sessions_router, prefix="/api/sessions", tags=["Editing Sessions"])
app.include_router(ai_router, prefix="/api/ai", tags=["AI"])


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": APP_VERSION,
        "status": "running",
        "llm_provider": settings.llm_provider,
        "llm_model": settings.active_llm_model,
        "llm_configured": settings.is_llm_configured,
    }


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "ai_available": getattr(app.state, "orchestrator", None) is not None,
    }
