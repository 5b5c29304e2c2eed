"""
============================================================================
Veritas Protocol v1.0.0
FastAPI Application Entry Point - Cross-Source Validation Service
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Domain datasets assembled by the upstream collector
Side Effects: Reliability/review persistence (optional), email alerts

SOVEREIGN MANDATE:
- Validation is best-effort: domain failures never fail the request
- Fatal inconsistencies reach human review
- Monitoring never slows down validation

ROUTES:
- /api/veritas/validate           Validation entry point
- /api/veritas/metrics            Monitoring dashboard
- /api/veritas/reliability        Provider trust scores
- /api/veritas/alerts/...         Fatal alert review (admin token)
- /health, /metrics               Liveness and Prometheus scrape

============================================================================
"""

import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from app.api.alerts import router as alerts_router
from app.api.monitoring import router as monitoring_router
from app.api.validation import router as validation_router
from app.database.session import (
    check_database_connection,
    ensure_schema,
    is_database_configured,
    reset_engine,
)
from services.validation_orchestrator import (
    get_validation_orchestrator,
    reset_validation_orchestrator,
)

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Seconds between monitoring rule evaluations
MONITOR_INTERVAL_SECONDS = int(os.getenv("VERITAS_MONITOR_INTERVAL_SECONDS", "60"))


# ============================================================================
# BACKGROUND MONITOR
# ============================================================================

async def run_monitor_loop(interval_seconds: int) -> None:
    """
    Periodically evaluate monitoring rules and send operational notifications.

    Reliability Level: L5 High
    Side Effects: Health gauge updates, operational emails
    """
    loop = asyncio.get_running_loop()
    while True:
        await asyncio.sleep(interval_seconds)
        correlation_id = str(uuid.uuid4())
        try:
            monitor = get_validation_orchestrator().monitor
            await loop.run_in_executor(None, monitor.check_and_notify, correlation_id)
        except Exception as e:
            logger.error(
                f"[VERITAS-MONITOR] Rule evaluation failed: {str(e)} | "
                f"correlation_id={correlation_id}"
            )


# ============================================================================
# APPLICATION LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup/shutdown events.

    Startup:
        - Bootstrap the schema when DATABASE_URL is set (non-blocking on failure)
        - Build the orchestrator (stores, dispatcher, monitor)
        - Start the monitoring loop

    Shutdown:
        - Stop the monitoring loop
        - Drain and stop the alert dispatcher
    """
    logger.info("=" * 60)
    logger.info("VERITAS PROTOCOL v1.0.0 - CROSS-SOURCE VALIDATION")
    logger.info("=" * 60)
    logger.info(f"Startup Time: {datetime.now(timezone.utc).isoformat()}")

    if is_database_configured():
        try:
            ensure_schema()
            logger.info("[OK] Veritas schema verified")
        except Exception as e:
            logger.error(f"[WARN] Schema bootstrap failed: {str(e)}")
            logger.error("       Reliability and review persistence may be unavailable")
    else:
        logger.info("[INFO] DATABASE_URL not set, using in-memory stores")

    orchestrator = get_validation_orchestrator()
    logger.info(
        f"[OK] Validation orchestrator ready | "
        f"enabled={orchestrator.config.enabled}"
    )

    monitor_task: Optional[asyncio.Task] = None
    if MONITOR_INTERVAL_SECONDS > 0:
        monitor_task = asyncio.create_task(run_monitor_loop(MONITOR_INTERVAL_SECONDS))

    yield

    logger.info("[SHUTDOWN] Veritas Protocol shutting down...")
    if monitor_task is not None:
        monitor_task.cancel()
        try:
            await monitor_task
        except asyncio.CancelledError:
            pass
    reset_validation_orchestrator()
    reset_engine()
    logger.info("[SHUTDOWN] Complete")


# ============================================================================
# APPLICATION INSTANCE
# ============================================================================

app = FastAPI(
    title="Veritas Protocol",
    description=(
        "Cross-source validation of market, social and on-chain data\n\n"
        "**Best-effort:** validation never prevents the caller from proceeding "
        "with unvalidated data.\n\n"
        "Fatal inconsistencies are escalated to human review."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    SOVEREIGN MANDATE: No silent failures
    """
    error_code = "SYS-500"
    logger.error(f"[{error_code}] Unhandled exception: {exc} | path={request.url.path}")

    return JSONResponse(
        status_code=500,
        content={
            "error_code": error_code,
            "message": "Internal server error. This incident has been logged.",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


# ============================================================================
# ROUTERS
# ============================================================================

app.include_router(validation_router, prefix="/api/veritas", tags=["Validation"])
app.include_router(monitoring_router, prefix="/api/veritas", tags=["Monitoring"])
app.include_router(alerts_router, prefix="/api/veritas/alerts", tags=["Alert Review"])


# ============================================================================
# SYSTEM ENDPOINTS
# ============================================================================

@app.get(
    "/health",
    summary="Health Check",
    description="Lightweight health check for load balancers and monitoring.",
    tags=["System"]
)
async def health_check():
    """
    Lightweight health check endpoint.

    Reliability Level: STANDARD
    Side Effects: Database ping when DATABASE_URL is set

    Returns:
        dict: Health status
    """
    if not is_database_configured():
        return {"status": "healthy", "database": "not_configured"}
    try:
        check_database_connection()
        return {"status": "healthy", "database": "ok"}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "error": str(e)}
        )


@app.get(
    "/metrics",
    summary="Prometheus Metrics",
    description="Exposes Prometheus metrics for observability.",
    tags=["Observability"]
)
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
