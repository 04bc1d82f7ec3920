import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Union

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes_catalog import router as catalog_router
from .api.routes_chat import router as chat_router
from .api.routes_dialogs import router as dialogs_router
from .api.routes_presets import router as presets_router
from .api.routes_prompt_library import router as prompt_library_router
from .api.routes_settings import router as settings_router
from .errors import (
    ComposeError,
    FetchError,
    NotFoundError,
    PromptLibraryError,
    PromptLibraryNotConfiguredError,
    PromptloomError,
    ProviderNotConfiguredError,
    StorageUnavailableError,
    TurnInProgressError,
)
from .llm.base import CompletionProvider
from .llm.registry import get_provider
from .services import build_services
from .storage.models import ProviderConfig

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
_STATUS_CODES: list[tuple[type[Exception], int]] = [
    (NotFoundError, 404),
    (ProviderNotConfiguredError, 400),
    (PromptLibraryNotConfiguredError, 400),
    (TurnInProgressError, 409),
    (StorageUnavailableError, 503),
    (ComposeError, 502),
    (FetchError, 502),
    (PromptLibraryError, 502),
]


def _status_for(exc: Exception) -> int:
    for exc_type, status in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status
    return 500


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )


def create_app(
    data_dir: Union[str, Path, None] = None,
    provider_factory: Callable[[ProviderConfig], CompletionProvider] = get_provider,
) -> FastAPI:
    services = build_services(data_dir, provider_factory)
    configure_logging(services.config.get().log_level)

    @asynccontextmanager
    async def lifespan(app):
        await services.open()
        yield
        services.close()

    app = FastAPI(title="Promptloom Backend", version=__version__, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",     # Vite dev server
            "http://127.0.0.1:5173",
            "null",                      # Electron file:// origin
        ],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(PromptloomError)
    async def promptloom_error_handler(request: Request, exc: PromptloomError):
        status = _status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    app.include_router(chat_router)
    app.include_router(dialogs_router)
    app.include_router(presets_router)
    app.include_router(catalog_router)
    app.include_router(settings_router)
    app.include_router(prompt_library_router)

    @app.get("/api/health")
    async def health_check():
        return {
            "status": "ok",
            "version": __version__,
            "schema_version": services.store.version,
        }

    return app
