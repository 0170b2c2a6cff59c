# backend/main.py
import logging
import os

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Internal imports
from backend.api.items import router as items_router
from backend.api.strategies import router as strategies_router
from backend.config import get_settings
from backend.core.errors import NotFoundError
from backend.database import create_tables
from backend.logging_config import configure_logging

settings = get_settings()
configure_logging()
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# FastAPI App Setup
# ---------------------------------------------------------------------
app = FastAPI(title=settings.API_TITLE, version=settings.API_VERSION)

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
    "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(items_router)
app.include_router(strategies_router)

# ---------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def bad_request_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok"}

# ---------------------------------------------------------------------
# Startup and Shutdown Events
# ---------------------------------------------------------------------
@app.on_event("startup")
def startup_event():
    """Runs when FastAPI starts."""
    # ✅ Ensure DB tables exist
    create_tables()

    # ✅ Optionally run the background jobs in-process
    if settings.SCHEDULER_ENABLED:
        from data_worker.scheduler import start_scheduler
        start_scheduler()
    logger.info(f"🚀 {settings.API_TITLE} started")


@app.on_event("shutdown")
def shutdown_event():
    """Graceful shutdown: stop the in-process scheduler if it runs."""
    if settings.SCHEDULER_ENABLED:
        from data_worker.scheduler import stop_scheduler
        stop_scheduler()
        logger.info("🧹 Scheduler stopped.")

# ---------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------
if __name__ == "__main__":
    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True
    )
