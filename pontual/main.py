from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .clock import utcnow
from .config import Settings, get_settings
from .errors import PontualError
from .logging_config import setup_logging
from .routers import ALL_ROUTERS
from .storage import Storage, create_storage
from .whatsapp import EvolutionClient


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    whatsapp_client_factory=None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(title="Pontual backend", version=settings.app_version)
    app.state.settings = settings
    app.state.storage = storage or create_storage(settings)
    app.state.clock = utcnow
    app.state.whatsapp_client_factory = whatsapp_client_factory or (
        lambda integration: EvolutionClient.from_integration(
            integration, timeout=settings.whatsapp_timeout_seconds
        )
    )

    # ---------------- CORS ----------------

    origins = settings.origins() or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------- Errors ----------------

    @app.exception_handler(PontualError)
    async def pontual_error_handler(request: Request, exc: PontualError):
        if exc.status_code >= 500:
            logger.error("Unhandled domain error", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # ---------------- Routes ----------------

    for router in ALL_ROUTERS:
        app.include_router(router, prefix="/api")

    @app.get("/api/health")
    def health():
        return {
            "service": "Pontual backend",
            "status": "ok",
            "storage": type(app.state.storage).__name__,
            "time": utcnow().isoformat(),
        }

    logger.info("Application ready", storage=type(app.state.storage).__name__)
    return app


def get_app() -> FastAPI:
    return create_app()
