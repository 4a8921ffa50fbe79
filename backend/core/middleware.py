import logging
import time

from fastapi import FastAPI, Request

logger = logging.getLogger("api")


def install_middleware(app: FastAPI):
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Response-Time"] = f"{elapsed_ms:.0f}ms"

        line = f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.0f} ms)"
        if response.status_code >= 500:
            logger.warning(line)
        else:
            logger.info(line)
        return response
