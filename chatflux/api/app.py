"""FastAPI Application Factory.

Creates the ChatFlux read API around a runtime. The runtime is started
in the application lifespan and stopped on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatflux import __version__
from chatflux.api import routes
from chatflux.errors.config import ErrorCode
from chatflux.errors.exceptions import ChatFluxError
from chatflux.runtime import ChatFluxRuntime
from chatflux.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def error_body(code: str, message: str, details: Optional[list] = None) -> dict:
    body = {"success": False, "error": {"code": code, "message": message}}
    if details:
        body["error"]["details"] = details
    return body


async def handle_chatflux_error(request: Request, exc: ChatFluxError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error_code.value, exc.message, exc.details),
    )


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "issue": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body(ErrorCode.VALIDATION_ERROR.value, "Invalid request", details),
    )


def create_app(
    runtime: Optional[ChatFluxRuntime] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        runtime: Runtime to serve. Built from settings if not provided.
        settings: Settings used for CORS and runtime construction.
    """
    settings = settings or (runtime.settings if runtime else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Kafka clients bind to the running loop, so a default runtime is built here.
        if app.state.runtime is None:
            app.state.runtime = ChatFluxRuntime.from_settings(settings)
        await app.state.runtime.start()
        logger.info("ChatFlux API starting up")
        yield
        logger.info("ChatFlux API shutting down")
        await app.state.runtime.stop()

    app = FastAPI(
        title="ChatFlux",
        version=__version__,
        description="Chat message history and pipeline status",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ChatFluxError, handle_chatflux_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.include_router(routes.router)

    logger.info("ChatFlux API v%s initialized", __version__)
    return app
