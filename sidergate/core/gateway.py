"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sidergate.adapters.anthropic_compat.mapper import error_chat_response
from sidergate.adapters.anthropic_compat.router import get_runtime, router as messages_router
from sidergate.adapters.anthropic_compat.upstream import close_upstream_async_client
from sidergate.config.settings import settings
from sidergate.core.auth import authenticate, authentication_error_payload
from sidergate.core.errors import AuthenticationError, ConfigurationError
from sidergate.core.models import error_payload
from sidergate.util.logger import logger, short_id


APP_VERSION = "0.1.0"

app = FastAPI(title=settings.app_name, version=APP_VERSION)
app.include_router(messages_router, prefix="/v1")

_PUBLIC_PATHS = frozenset({"/", "/health"})


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    path = request.url.path
    if path in _PUBLIC_PATHS or not path.startswith("/v1/"):
        return await call_next(request)
    try:
        request.state.auth = authenticate(request.headers)
    except AuthenticationError as exc:
        logger.warning("authentication failed path=%s code=%s message=%s", path, exc.code, exc)
        return JSONResponse(status_code=401, content=authentication_error_payload(exc))
    logger.debug("auth ok type=%s token=%s", request.state.auth.type, short_id(request.state.auth.token, 8))
    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("request body rejected path=%s errors=%s", request.url.path, exc.errors()[:3])
    return JSONResponse(
        status_code=400,
        content=error_payload("invalid_request_error", "Request body must be a JSON object"),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error path=%s", request.url.path)
    if request.url.path == "/v1/messages":
        return JSONResponse(status_code=500, content=error_chat_response(exc).to_payload())
    return JSONResponse(status_code=500, content=error_payload("api_error", "Internal server error"))


@app.get("/health")
def health() -> dict:
    logger.info("health check")
    return {"status": "ok"}


@app.get("/")
def service_info() -> dict:
    return {
        "name": settings.app_name,
        "version": APP_VERSION,
        "endpoints": {
            "messages": "/v1/messages",
            "count_tokens": "/v1/messages/count_tokens",
            "models": "/v1/models",
            "backends_status": "/v1/messages/backends/status",
            "health": "/health",
        },
    }


@app.on_event("startup")
async def startup_load_backends() -> None:
    try:
        runtime = get_runtime()
    except ConfigurationError as exc:
        logger.error("backend configuration invalid, refusing to start: %s", exc)
        raise
    logger.info("gateway ready backends=%s", runtime.config.enabled_backends())


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_upstream_async_client()


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("sidergate.core.gateway:app", host=settings.host, port=settings.port, log_level=settings.log_level)
