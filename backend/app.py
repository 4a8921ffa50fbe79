"""
Inventory lending API.

Members request and return EasyVerein inventory; the board approves,
verifies returns and can trigger the mirror sync by hand.
"""
import os
import time
import logging

from dotenv import load_dotenv
load_dotenv()  # local development; production passes real env vars

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from core.config import settings
from core.errors import install_handlers
from core.middleware import install_middleware
from core.scheduler import shutdown_scheduler, start_scheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

DEV_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
API_PREFIX = "/api/v1/inventory"

started_at = time.time()
app = FastAPI(
    title="Inventory Lending API",
    version="1.0.0",
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
)


# --- Tables ------------------------------------------------------------------
try:
    from core.db import initialize_database
    initialize_database()
except Exception as e:
    # The API still boots so /api/health can report; DB-backed routes will fail
    logger.error(f"❌ Database initialization failed: {e}")


# --- HTTP stack --------------------------------------------------------------
origins = settings.cors_origins()
if not origins:
    origins = DEV_ORIGINS
    logger.info("🔧 ALLOW_ORIGINS empty, using localhost origins")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
install_middleware(app)
install_handlers(app)


@app.get("/api/health")
def health():
    return {"status": "ok", "uptime": round(time.time() - started_at, 2)}


# --- Routers -----------------------------------------------------------------
try:
    from modules.inventory import rentals_router, sync_router

    app.include_router(rentals_router, prefix=API_PREFIX, tags=["inventory-rentals"])
    app.include_router(sync_router, prefix=API_PREFIX, tags=["inventory-sync"])
except Exception as e:
    logger.error(f"[boot] ERROR: inventory routers failed to mount at {API_PREFIX}: {e}")


# --- Background jobs ---------------------------------------------------------
@app.on_event("startup")
async def _start_background_jobs():
    start_scheduler()


@app.on_event("shutdown")
async def _stop_background_jobs():
    shutdown_scheduler()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "false").lower() == "true",
    )
