"""
HTTP entrypoint for the translation orchestration service.

Run with ``python -m src.server`` (reads config/samvaad.yaml and .env).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import conversation, health, translate
from .config import AppConfig, load_config
from .core.orchestrator import ConversationOrchestrator
from .logging_config import configure_logging, get_logger
from .pipelines.base import LanguageServiceClient
from .pipelines.bhashini import BhashiniClient
from .pipelines.retry import RetryPolicy

logger = get_logger(__name__)


def create_app(
    config: Optional[AppConfig] = None,
    *,
    client: Optional[LanguageServiceClient] = None,
    orchestrator: Optional[ConversationOrchestrator] = None,
) -> FastAPI:
    """Build the FastAPI app.

    ``client`` / ``orchestrator`` are injectable so tests can run without the
    real provider.
    """
    config = config or load_config()
    configure_logging(config.logging.level, config.logging.format)

    if orchestrator is None:
        retry = RetryPolicy.from_config(config.retry)
        # Resolve runs inside each stage call, so the sequencer's stage retry already covers it.
        client = client or BhashiniClient(config.provider)
        orchestrator = ConversationOrchestrator.from_config(config, client, retry=retry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.start()
        logger.info(
            "Translation service started",
            online=orchestrator.monitor.is_online,
            languages={s.value: code.value for s, code in orchestrator.languages.items()},
        )
        try:
            yield
        finally:
            await orchestrator.close()
            logger.info("Translation service stopped")

    app = FastAPI(
        title="Samvaad Translation Orchestrator",
        description="ASR → NMT → TTS orchestration for citizen/officer conversations.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.orchestrator = orchestrator

    cors_origins = list(config.server.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return JSONResponse(status_code=405, content={"error": "Method not allowed"})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        # Malformed bodies are client errors like any other missing field.
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})

    app.include_router(translate.router, tags=["translate"])
    app.include_router(health.router, tags=["health"])
    app.include_router(conversation.router, prefix="/conversation", tags=["conversation"])
    app.mount("/metrics", make_asgi_app())
    return app


def main() -> None:
    import uvicorn

    config = load_config()
    configure_logging(config.logging.level, config.logging.format)
    uvicorn.run(create_app(config), host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
