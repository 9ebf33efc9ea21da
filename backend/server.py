from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import logging
import time
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import traceback

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import Settings, get_settings, validate_environment
from logging_config import setup_logging
from sentry_integration import init_sentry, capture_exception
from database.connection import dispose_engine, init_db
from reconciliation.endpoints.reconciliation_api import get_sql_stores, get_stores, router as reconciliation_router

logger = logging.getLogger(__name__)


def _lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler"""
        # Startup
        logger.info("=" * 60)
        logger.info("Starting Bank Reconciliation Core API...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug Mode: {settings.debug_enabled}")
        logger.info("=" * 60)

        env_status = validate_environment()
        if not env_status["valid"]:
            for error in env_status["errors"]:
                logger.error(f"Configuration Error: {error}")
            if settings.is_production:
                raise RuntimeError("Cannot start in production with invalid configuration")

        for warning in env_status.get("warnings", []):
            logger.warning(f"Configuration Warning: {warning}")

        if settings.DATABASE_URL:
            await init_db()
            logger.info("PostgreSQL connection established")
        else:
            logger.info("No DATABASE_URL configured, using in-memory stores")

        yield

        # Shutdown
        logger.info("Shutting down Bank Reconciliation Core API...")
        await dispose_engine()

    return lifespan


def create_app(settings: Settings = None) -> FastAPI:
    """
    Build the API application.

    Binds the SQL stores when DATABASE_URL is configured, the in-memory
    stores otherwise.
    """
    settings = settings or get_settings()

    # JSON logs in production, plain text in development
    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.is_production,
        service_name="bankrec-core"
    )

    if settings.SENTRY_DSN:
        init_sentry(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=settings.API_VERSION,
            traces_sample_rate=0.1 if settings.is_production else 0.0,
        )

    app = FastAPI(
        title=settings.API_TITLE,
        description="""
        Bank statement ingestion and invoice reconciliation.

        ### Import (/api/reconciliation/import)
        - Parse semicolon-separated bank exports (European formats)
        - Deduplicate re-imported rows
        - Suggest expense / income categories

        ### Matching (/api/reconciliation/invoices, /auto-matchable)
        - Score candidate payments for open invoices
        - Best match and high-confidence auto-match selection

        ### Decisions (/api/reconciliation/matches, /transactions)
        - Confirm, reject and unmatch
        - Ignore / un-ignore transactions
        """,
        version=settings.API_VERSION,
        lifespan=_lifespan(settings),
        docs_url="/api/docs" if settings.debug_enabled else None,
        redoc_url="/api/redoc" if settings.debug_enabled else None,
    )

    api_router = APIRouter(prefix="/api")

    # ==================== HEALTH CHECK ENDPOINTS ====================

    @api_router.get("/", tags=["Health"])
    async def root():
        """Basic health check - returns 200 if service is running"""
        return {
            "message": "Bank Reconciliation Core API",
            "status": "healthy",
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    @api_router.get("/health", tags=["Health"])
    async def health_check():
        """
        Health check for load balancers and uptime monitors.

        Returns:
        - 200: All systems operational
        - 503: Database configured but unreachable
        """
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
            "checks": {}
        }

        if settings.DATABASE_URL:
            try:
                await init_db()
                health_status["checks"]["database"] = {"status": "connected", "type": "postgresql"}
            except Exception as e:
                logger.error(f"Database health check failed: {e}")
                health_status["status"] = "unhealthy"
                health_status["checks"]["database"] = {"status": "disconnected"}
        else:
            health_status["checks"]["database"] = {"status": "in-memory"}

        env_status = validate_environment()
        health_status["checks"]["configuration"] = {
            "status": "valid" if env_status["valid"] else "invalid",
            "warnings": len(env_status.get("warnings", [])),
            "errors": len(env_status.get("errors", []))
        }

        if health_status["status"] == "unhealthy":
            raise HTTPException(status_code=503, detail=health_status)

        return health_status

    @api_router.get("/health/live", tags=["Health"])
    async def liveness_check():
        """
        Liveness check.
        Returns 200 if the process is running (doesn't check dependencies).
        """
        return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}

    api_router.include_router(reconciliation_router)
    app.include_router(api_router)

    if settings.DATABASE_URL:
        app.dependency_overrides[get_stores] = get_sql_stores

    # ==================== MIDDLEWARE ====================

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing information"""
        start_time = time.time()

        request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")

        if settings.debug_enabled:
            logger.debug(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = time.time() - start_time

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

            if settings.debug_enabled or response.status_code >= 400:
                logger.info(
                    f"[{request_id}] {request.method} {request.url.path} -> "
                    f"{response.status_code} ({process_time:.3f}s)"
                )

            return response
        except Exception as e:
            logger.error(f"[{request_id}] Request failed: {str(e)}")
            raise

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions"""
        logger.error(f"Unhandled exception: {exc}")
        capture_exception(exc, path=request.url.path)

        # Don't expose internal errors in production
        if settings.is_production:
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"}
            )
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
                "traceback": traceback.format_exc() if settings.debug_enabled else None
            }
        )

    return app


app = create_app()
