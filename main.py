"""
Workshop Ledger - FastAPI Application Entry Point

This is the main entry point for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import make_url

from app.config import settings
from app.database import init_db, close_db
from app.utils.error_handling import (
    setup_exception_handlers,
    ErrorTrackingMiddleware,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Database: {make_url(settings.database_url_async).render_as_string(hide_password=True)}")

    # Initialize database (dev only - use migrations in production)
    if settings.is_development:
        await init_db()
        logger.info("Database tables initialized")

    if settings.shadow_audit_enabled:
        logger.info(f"Shadow audit scan every {settings.shadow_audit_poll_seconds}s (celery beat)")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Job records, audit trail and recovery tooling for a repair workshop",
    version="0.1.0",
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(ErrorTrackingMiddleware)

# Global error handlers
setup_exception_handlers(app)


# ===========================================
# API ROUTES
# ===========================================

@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "status": "running",
        "environment": settings.app_env,
        "api_docs": "/api/docs" if settings.is_development else "disabled",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "database": "connected",
    }


@app.get("/api/v1")
async def api_root():
    """API v1 root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name} API v1",
        "endpoints": {
            "jobs": "/api/v1/jobs",
            "customers": "/api/v1/customers",
            "audit": "/api/v1/audit/entries",
            "recovery": "/api/v1/recovery",
            "shadow_audit": "/api/v1/shadow-audit/entries",
            "reconciliation": "/api/v1/reconciliation",
            "preferences": "/api/v1/preferences/{category}",
        }
    }


# ===========================================
# INCLUDE ROUTERS
# ===========================================

from app.routers import (
    jobs, customers, audit, recovery,
    shadow_audit, reconciliation, preferences,
)

# Job records (versioned writes)
app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])
app.include_router(customers.router, prefix="/api/v1/customers", tags=["Customers"])

# Change capture, review & undo
app.include_router(audit.router, prefix="/api/v1/audit", tags=["Audit Trail"])

# Point-in-time restore and rebuild
app.include_router(recovery.router, prefix="/api/v1/recovery", tags=["Recovery"])

# Out-of-band write detection
app.include_router(shadow_audit.router, prefix="/api/v1/shadow-audit", tags=["Shadow Audit"])

# Baseline linkage checks
app.include_router(reconciliation.router, prefix="/api/v1/reconciliation", tags=["Reconciliation"])

app.include_router(preferences.router, prefix="/api/v1/preferences", tags=["Preferences"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=5120,
        reload=settings.is_development,
    )
