"""Logging setup and HTTP audit middleware."""

import logging
from time import perf_counter

from fastapi import FastAPI, Request

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

audit_logger = logging.getLogger("canchaya.audit")


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once. Safe to call more than once."""
    root = logging.getLogger()
    if not any(getattr(h, "_canchaya", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handler._canchaya = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level.upper())


def add_audit_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def audit(request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        duration_ms = (perf_counter() - start) * 1000
        client_ip = request.client.host if request.client else "unknown"
        audit_logger.info(
            "%s %s | status=%s | client=%s | duration=%.2fms",
            request.method,
            request.url.path,
            response.status_code,
            client_ip,
            duration_ms,
        )
        return response
