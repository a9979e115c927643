"""
Wiring shared by both deployables: logging, the ServiceError → HTTP mapping,
the Prometheus endpoint and the health check.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from socialgraph.config import settings
from socialgraph.errors import ErrorKind, ServiceError

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.INTERNAL: 500,
}


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind.value, "detail": exc.detail},
    )


def install_common(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)

    # ── Prometheus metrics endpoint ────────────────────────────────────────
    # Scraped by Prometheus
    app.mount("/metrics", make_asgi_app())

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": settings.service_name}
