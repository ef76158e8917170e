"""FastAPI application setup."""

import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..app import Application
from ..errors import ChatError, RateLimited
from ..logging_config import get_logger
from .routes import chat, control, operator, push, status

logger = get_logger(__name__)

# Global application instance
_app: Application | None = None


def get_app() -> Application:
    """Get the global application instance."""
    global _app
    if not _app:
        _app = Application()
    return _app


def _error_body(message: str, code: str) -> dict:
    return {"error": message, "code": code}


def _install_error_handlers(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, type(exc).__name__),
            headers=headers,
        )

    @fastapi_app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug("Rejected request to %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=400,
            content=_error_body("Invalid request", "ValidationError"),
        )

    @fastapi_app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail), "HTTPException"),
            headers=getattr(exc, "headers", None),
        )

    @fastapi_app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body("Internal error", "ChatError"),
        )


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    application = application or get_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        # Startup
        await application.start()
        yield
        # Shutdown
        sim_instance = control.get_sim_instance()
        if sim_instance:
            await sim_instance.stop()
        await application.stop()

    fastapi_app = FastAPI(
        title="Support Chat API",
        description="Near-real-time sync API for support conversations",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Enable CORS (cookies are sent cross-origin from the widget dev server)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=application.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )

    _install_error_handlers(fastapi_app)

    # Include routers
    fastapi_app.include_router(chat.create_chat_router(application))
    fastapi_app.include_router(operator.create_operator_router(application))
    fastapi_app.include_router(push.create_push_router(application))
    fastapi_app.include_router(status.create_status_router(application))
    if application.settings.control_enabled:
        fastapi_app.include_router(control.create_control_router(application))
        logger.warning("Control routes enabled; do not expose this server publicly")

    return fastapi_app
