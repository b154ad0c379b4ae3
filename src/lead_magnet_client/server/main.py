import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from lead_magnet_client import create_data_client
from lead_magnet_client.client import DataClient
from lead_magnet_client.config import AuthConfig, get_settings
from lead_magnet_client.exceptions import DataClientError
from .api import files_router, pages_router, page_files_router, leads_router, profile_router
from .public import router as public_router

logger = logging.getLogger(__name__)


def error_body(message: str, code: Optional[str] = None) -> dict:
    body = {"success": False, "message": message}
    if code:
        body["code"] = code
    return body


async def data_client_error_handler(request: Request, exc: DataClientError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}", exc_info=exc)
    message = str(exc) or exc.__class__.__name__
    if exc.status_code == 500:
        message = "Internal server error"
    return JSONResponse(status_code=exc.status_code, content=error_body(message, exc.code))


async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_body(message, "VALIDATION"))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


def create_app(client: Optional[DataClient] = None, auth: Optional[AuthConfig] = None) -> FastAPI:
    """
    Builds the API. When no client is passed one is created from the
    environment at start-up. The client is closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.data_client is None:
            app.state.data_client = create_data_client()
        try:
            yield
        finally:
            app.state.data_client.registry.clear()
            await app.state.data_client.aclose()

    app = FastAPI(title="lead-magnet-client", lifespan=lifespan)
    app.state.data_client = client
    app.state.auth = auth or get_settings().auth

    app.add_exception_handler(DataClientError, data_client_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    for router in (files_router, pages_router, page_files_router, leads_router, profile_router, public_router):
        app.include_router(router)

    @app.get("/health")
    async def health(request: Request):
        statuses = await request.app.state.data_client.check_connections()
        healthy = all(s == "ok" for s in statuses.values())
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "ok" if healthy else "degraded", "services": statuses},
        )

    return app
