"""FastAPI application for the review_watch service."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..exceptions import NotConnectedError, ReviewWatchError
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "api"})

ERROR_CODES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "BAD_REQUEST",
    status.HTTP_422_UNPROCESSABLE_ENTITY: "BAD_REQUEST",
}


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore
    """Application lifespan context manager for startup/shutdown."""
    ensure_runtime_configuration(get_settings())
    logger.info("review_watch API starting up...")
    yield
    logger.info("review_watch API shutting down...")


app = FastAPI(
    title="review_watch API",
    description="Review sync and alerting service",
    version="0.1.0",
    lifespan=lifespan,
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def error_response(
    request: Request,
    status_code: int,
    message: str,
    *,
    code: str | None = None,
) -> JSONResponse:
    """Build the ``{ok: false, error: {code, message}, requestId}`` envelope."""

    request_id = _request_id(request)
    return JSONResponse(
        status_code=status_code,
        content={
            "ok": False,
            "error": {"code": code or ERROR_CODES.get(status_code, "INTERNAL"), "message": message},
            "requestId": request_id,
        },
        headers={"X-Request-Id": request_id},
    )


@app.middleware("http")
async def assign_request_id(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Tag every request and response with a correlation id."""

    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    message = first.get("msg", "Malformed request") if isinstance(first, dict) else "Malformed request"
    return error_response(request, status.HTTP_400_BAD_REQUEST, str(message), code="BAD_REQUEST")


@app.exception_handler(NotConnectedError)
async def not_connected_handler(request: Request, exc: NotConnectedError) -> JSONResponse:
    return error_response(request, status.HTTP_404_NOT_FOUND, str(exc), code="NOT_FOUND")


@app.exception_handler(ReviewWatchError)
async def review_watch_exception_handler(request: Request, exc: ReviewWatchError) -> JSONResponse:
    """Handle application errors that escaped a route."""
    logger.error(
        "ReviewWatchError: %s",
        exc,
        extra={"path": request.url.path, "request_id": _request_id(request), "status": "error"},
    )
    return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), code="INTERNAL")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={"path": request.url.path, "request_id": _request_id(request), "status": "error"},
    )
    return error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error", code="INTERNAL"
    )


# Import routers
from .routes import health, metrics, sync  # noqa: E402

app.include_router(health.router, tags=["health"])
app.include_router(sync.router, prefix="/api/v1", tags=["sync"])
app.include_router(metrics.router, tags=["monitoring"])
