"""
FastAPI application main module.
Middleware, domain error rendering, health checks and the v1 router.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid
from contextlib import asynccontextmanager
from affiliate_core.api.v1 import api_router
from affiliate_core.config import CORS_ORIGINS, LOG_FILE, LOG_LEVEL
from affiliate_core.database import Base, SessionLocal, engine
from affiliate_core.errors import CoreError
from affiliate_core.integrations import HttpExtractionProvider
from affiliate_core.services.proof_extraction_cache import ProofExtractionCache
from affiliate_core.utils import setup_logging, get_logger
import affiliate_core.models.db  # noqa: F401  registers every table on Base.metadata

# Setup logging before creating the app
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    enable_console=True
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Application startup initiated")
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        # Tests install their own cache with a fake provider before startup.
        if getattr(app.state, "extraction_cache", None) is None:
            app.state.extraction_cache = ProofExtractionCache(HttpExtractionProvider())  # type: ignore[attr-defined]
            logger.info("Proof extraction cache initialised")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Affiliate Commerce Core",
    description="""
    Order lifecycle, suspension cascade, wallet ledger and proof extraction
    for a multi-portal affiliate commerce platform.

    ## Authentication
    Use Bearer token authentication with your account API key:
    ```
    Authorization: Bearer <api_key>
    ```

    ## Errors
    Domain failures are returned as
    `{"success": false, "code": "...", "message": "...", "details": {...}, "request_id": "..."}`.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# Request ID and request/response logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

# Custom exception handlers
@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError):
    """Render domain errors with their stable code and category status."""
    request_id = getattr(request.state, "request_id", "unknown")

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Domain error",
        code=exc.code,
        category=exc.category,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "code": exc.code,
            "message": exc.message,
            "category": exc.category,
            "details": jsonable_encoder(exc.details),
            "request_id": request_id
        }
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
            "request_id": request_id
        }
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        },
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": "affiliate-core",
        "version": "1.0.0",
        "timestamp": time.time(),
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with database status and extraction cache counters."""
    health_status = {
        "status": "healthy",
        "service": "affiliate-core",
        "version": "1.0.0",
        "timestamp": time.time(),
        "checks": {}
    }

    try:
        from sqlalchemy import text
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    cache = getattr(app.state, "extraction_cache", None)
    health_status["checks"]["extraction_cache"] = cache.stats() if cache is not None else "not initialised"

    return health_status

@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Affiliate Commerce Core API",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

app.include_router(api_router, prefix="/api/v1")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "affiliate_core.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["affiliate_core"],
        log_level="info",
        access_log=True
    )
