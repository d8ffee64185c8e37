from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

from examguard.core.config import settings
from examguard.core.database import create_db_and_tables, AsyncSessionLocal
from examguard.core.cache import cache
from examguard.core.exceptions import ProctoringError
from examguard.api.v1.api import api_router
from examguard.middleware.performance import PerformanceMiddleware
from examguard.proctoring.supervisor import SessionSupervisor
from examguard.realtime.handlers import RealtimeHandler
from examguard.realtime.manager import manager
from examguard.utils.timezone import utc_now

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="ExamGuard API",
    description="Exam session lifecycle, violation escalation and live proctoring",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    PerformanceMiddleware,
    slow_request_threshold=settings.slow_request_threshold
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProctoringError)
async def proctoring_exception_handler(request: Request, exc: ProctoringError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "error": exc.error_code}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": getattr(request.state, 'request_id', 'unknown')
        }
    )


@app.on_event("startup")
async def startup_event():
    """Application startup tasks"""
    logger.info("Starting ExamGuard API...")

    await create_db_and_tables()
    logger.info("Database initialized")

    try:
        cache_health = await cache.ahealth_check()
        if cache_health:
            logger.info("Cache connection established")
        else:
            logger.warning("Cache connection failed - running without cache")
    except Exception as e:
        logger.error(f"Cache initialization error: {e}")

    supervisor = SessionSupervisor(AsyncSessionLocal, manager)
    app.state.supervisor = supervisor
    app.state.realtime = RealtimeHandler(manager, supervisor, AsyncSessionLocal)

    logger.info("ExamGuard API startup completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown tasks"""
    logger.info("Shutting down ExamGuard API...")

    supervisor = getattr(app.state, "supervisor", None)
    if supervisor is not None:
        await supervisor.shutdown()
    await manager.close_all()

    try:
        await cache.aclose()
        logger.info("Cache connections closed")
    except Exception as e:
        logger.error(f"Error closing cache connections: {e}")

    logger.info("ExamGuard API shutdown completed")


app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Database, cache and host health"""
    health_status = {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "version": "1.0.0",
        "services": {},
        "live_sessions": len(app.state.supervisor.active_session_ids()) if hasattr(app.state, "supervisor") else 0,
        "connections": len(manager.connections()),
    }

    if cache.enabled:
        cache_health = await cache.ahealth_check()
        health_status["services"]["cache"] = "healthy" if cache_health else "unhealthy"
    else:
        health_status["services"]["cache"] = "disabled"

    try:
        from sqlalchemy import text
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    try:
        import psutil
        health_status["system"] = {
            "cpu_percent": psutil.cpu_percent(),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_percent": psutil.disk_usage('/').percent
        }
    except Exception as e:
        health_status["system"] = f"error: {str(e)}"

    return health_status


@app.get("/")
async def read_root():
    return {
        "message": "Welcome to the ExamGuard API!",
        "version": "1.0.0",
    }
