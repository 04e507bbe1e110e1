"""FastAPI application factory for the snapshot-serving emulator.

Usage::

    from kubesnap.emulator.app import create_app

    registry = ContextRegistry.from_search_paths(["./kubesnap"])
    app = create_app(registry=registry, config=config.serve)

The factory is used by both the ``serve`` bootstrap (``kubesnap.app``) and
the tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from kubesnap.emulator.contexts import ContextRegistry, UnknownContextError
from kubesnap.emulator.routes import router
from kubesnap.emulator.schemas import Status, StatusError
from kubesnap.filters.engine import FilterSyntaxError
from kubesnap.models.config import ServeConfig
from kubesnap.observability.metrics import requests_total
from kubesnap.snapshot.store import SnapshotReadError

_log = structlog.get_logger(component="emulator.app")

_HTTP_REASONS = {
    400: "BadRequest",
    404: "NotFound",
    405: "MethodNotAllowed",
    406: "NotAcceptable",
    415: "UnsupportedMediaType",
}


def _status_response(status: Status) -> JSONResponse:
    return JSONResponse(status_code=status.code, content=status.model_dump(exclude_none=True))


class RequestMetricsMiddleware:
    """Count every response by verb and status code.

    Plain ASGI so streaming watch responses pass through untouched.  Route
    handlers name the verb through ``request.state.verb``.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        code = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal code
            if message["type"] == "http.response.start":
                code = int(message["status"])
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            verb = (scope.get("state") or {}).get("verb") or str(scope.get("method", "")).lower()
            requests_total.labels(verb=verb, code=str(code)).inc()


def create_app(registry: ContextRegistry, config: ServeConfig | None = None) -> FastAPI:
    """Create the emulator application.

    Args:
        registry: Contexts to serve.  Shared by every request.
        config:   ServeConfig.  Used for the watch idle timeout.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from kubesnap import __version__

    app = FastAPI(
        title="kubesnap",
        summary="Read-only Kubernetes API replayed from cluster snapshots",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.registry = registry
    app.state.config = config or ServeConfig()

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> JSONResponse:
        return JSONResponse({"status": "ok", "contexts": registry.names()})

    app.include_router(router)
    app.add_middleware(RequestMetricsMiddleware)

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(StatusError)
    async def status_error_handler(_request: Request, exc: StatusError) -> JSONResponse:
        return _status_response(exc.status)

    @app.exception_handler(UnknownContextError)
    async def unknown_context_handler(_request: Request, exc: UnknownContextError) -> JSONResponse:
        return _status_response(Status(message=str(exc), reason="UnknownContext", code=404))

    @app.exception_handler(FilterSyntaxError)
    async def selector_error_handler(_request: Request, exc: FilterSyntaxError) -> JSONResponse:
        return _status_response(Status(message=str(exc), reason="BadRequest", code=400))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "invalid request"
        if errors:
            loc = errors[0].get("loc", ())
            message = f"invalid {loc[-1] if loc else 'parameter'}: {errors[0].get('msg', '')}"
        return _status_response(Status(message=message, reason="BadRequest", code=400))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        reason = _HTTP_REASONS.get(exc.status_code, "InternalError" if exc.status_code >= 500 else "BadRequest")
        return _status_response(Status(message=str(exc.detail), reason=reason, code=exc.status_code))

    @app.exception_handler(SnapshotReadError)
    async def snapshot_read_handler(request: Request, exc: SnapshotReadError) -> JSONResponse:
        _log.error(
            "snapshot_read_failed",
            path=str(request.url.path),
            blob=exc.path,
            error=exc.reason,
        )
        return _status_response(
            Status(message=f"failed to read stored object: {exc.reason}", reason="InternalError", code=500)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions.  Never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return _status_response(Status(message="An unexpected error occurred.", reason="InternalError", code=500))

    return app
