"""
Tourpass Refunds
FastAPI application entry point

- Refund lifecycle routes (customer + admin)
- Rate limiting with SlowAPI
- Domain error mapping and error sanitization
- Health endpoint with DB ping
"""
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import JSONResponse

from tourpass.api.routes import refunds, admin_refunds
from tourpass.core.config import settings
from tourpass.core.database import get_db
from tourpass.core.error_handler import ErrorSanitizationMiddleware, tourpass_error_handler
from tourpass.core.exceptions import TourpassBaseError
from tourpass.core.rate_limit import limiter, rate_limit_exceeded_handler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Tourpass Refunds API",
    description="Refund lifecycle and pass-state synchronization for tourist passes",
    version="0.1.0",
    openapi_tags=[
        {"name": "Refunds", "description": "Customer refund requests"},
        {"name": "Admin - Refunds", "description": "Refund review and completion"},
        {"name": "Health", "description": "Liveness checks"},
    ],
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Domain errors -> status code + verbatim message
app.add_exception_handler(TourpassBaseError, tourpass_error_handler)

# Error sanitization (catches unhandled exceptions)
app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(refunds.router, prefix="/api", tags=["Refunds"])
app.include_router(admin_refunds.router, prefix="/api", tags=["Admin - Refunds"])


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": "Tourpass Refunds API",
        "version": "0.1.0",
        "status": "operational"
    }


@app.get("/health", tags=["Health"])
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check with an actual DB ping.
    Returns 503 if database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "environment": settings.ENVIRONMENT,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        logger.warning(f"Health check DB ping failed: {type(e).__name__}: {e}")
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
