"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request

from chatgate.adapters.chat.responses import error_response
from chatgate.adapters.chat.router import router as chat_router
from chatgate.adapters.upstream import close_upstream_async_client
from chatgate.config.settings import settings
from chatgate.core.audit import flush_audit, shutdown_audit_worker
from chatgate.util.logger import logger

app = FastAPI(title=settings.app_name)
app.include_router(chat_router, prefix="/api")

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@app.middleware("http")
async def request_boundary_middleware(request: Request, call_next):
    if request.url.path == "/health":
        return await call_next(request)

    max_bytes = int(settings.max_request_body_bytes)
    if max_bytes > 0 and request.method.upper() in _BODY_METHODS:
        content_length_header = request.headers.get("content-length", "").strip()
        if content_length_header:
            try:
                content_length = int(content_length_header)
            except ValueError:
                await request.body()
                logger.warning("boundary reject invalid content-length path=%s", request.url.path)
                return error_response(400, "Invalid Content-Length")
            if content_length > max_bytes:
                await request.body()
                logger.warning(
                    "boundary reject oversize request content_length=%s max=%s path=%s",
                    content_length,
                    max_bytes,
                    request.url.path,
                )
                return error_response(413, "Request body too large")
        else:
            cached_body = await request.body()
            if len(cached_body) > max_bytes:
                logger.warning(
                    "boundary reject oversize request actual_size=%s max=%s path=%s",
                    len(cached_body),
                    max_bytes,
                    request.url.path,
                )
                return error_response(413, "Request body too large")

    try:
        return await call_next(request)
    except Exception:  # pragma: no cover - fail-safe
        logger.exception("gateway unhandled exception path=%s", request.url.path)
        return error_response(500, "Internal server error")


@app.get("/health")
def health() -> dict:
    logger.info("health check")
    return {"status": "ok"}


def assert_service_configured() -> bool:
    if settings.upstream_api_key:
        return True
    logger.error("upstream api key not configured; chat requests will fail with 500")
    if settings.strict_startup:
        raise RuntimeError("missing upstream api key (CHATGATE_UPSTREAM_API_KEY / PERSONAL_AI_API_KEY)")
    return False


@app.on_event("startup")
async def startup_checks() -> None:
    assert_service_configured()
    logger.info(
        "chatgate ready upstream=%s rate_limit=%s backend=%s",
        settings.upstream_url,
        settings.enable_rate_limit,
        settings.rate_limit_backend,
    )


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_upstream_async_client()
    flush_audit()
    shutdown_audit_worker()
