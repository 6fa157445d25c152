from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import CardNotFoundError, InvalidInputError, SchedulerError, StoreUnavailableError
from .logging import configure_logging, logger
from .middleware import AccessLogMiddleware, RequestIDMiddleware
from .routers import health
from .routers import srs as srs_router

_STATUS_BY_ERROR: tuple[tuple[type[SchedulerError], int], ...] = (
    (CardNotFoundError, 404),
    (InvalidInputError, 400),
    (StoreUnavailableError, 503),
)


def _error_response(status_code: int, detail: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


async def _handle_scheduler_error(request: Request, exc: SchedulerError) -> JSONResponse:
    status_code = 500
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped
            break
    if status_code >= 500:
        logger.error(
            "scheduler_error",
            path=request.url.path,
            code=exc.code,
            error=str(exc),
            error_class=exc.__class__.__name__,
        )
    return _error_response(status_code, str(exc), exc.code)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{location}: {err.get('msg', 'invalid')}")
    return _error_response(400, "; ".join(messages) or "invalid request", InvalidInputError.code)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    configure_logging()
    app = FastAPI(title="SRS Engine API", version="0.1.0")

    # Starlette では後から追加したミドルウェアが外側で実行される。
    # RequestID を外側に置き、AccessLog の出力にも request_id が載るようにする。
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(SchedulerError, _handle_scheduler_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]

    app.include_router(health.router)
    app.include_router(srs_router.router, prefix="/api/srs")
    return app


app = create_app()
