"""
NairaPay Core - FastAPI Application Entry Point

This is the main entry point for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import settings
from app.database import close_db, init_db, session_scope
from app.utils.error_handling import ErrorTrackingMiddleware, setup_exception_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def seed_tax_tables():
    """Make sure the statutory PITA 2011 and NTA 2025 tables exist."""
    from app.services.tax_table_service import TaxTableService

    async with session_scope() as session:
        created = await TaxTableService(session).seed_statutory_tables()
        logger.info("Statutory tax tables ready (%d new)", len(created))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")

    # Initialize database (dev only)
    if settings.is_development:
        await init_db()
        logger.info("Database tables initialized")
        await seed_tax_tables()

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Multi-tenant payroll, wage advance and purchase order engine for Nigerian businesses",
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

setup_exception_handlers(app)


# ===========================================
# ROUTERS
# ===========================================

from app.routers import (  # noqa: E402
    approvals,
    audit,
    payroll,
    payroll_reports,
    purchase_orders,
    tax,
    wage_advances,
)

API_PREFIX = f"/api/{settings.api_version}"

app.include_router(tax.router, prefix=f"{API_PREFIX}/tax", tags=["Tax"])
app.include_router(payroll_reports.router, prefix=f"{API_PREFIX}/payroll/reports", tags=["Payroll Reports"])
app.include_router(payroll.router, prefix=f"{API_PREFIX}/payroll", tags=["Payroll"])
app.include_router(wage_advances.router, prefix=f"{API_PREFIX}/wage-advances", tags=["Wage Advances"])
app.include_router(purchase_orders.router, prefix=f"{API_PREFIX}/purchase-orders", tags=["Purchase Orders"])
app.include_router(approvals.router, prefix=f"{API_PREFIX}/approvals", tags=["Approvals"])
app.include_router(audit.router, prefix=f"{API_PREFIX}/audit", tags=["Audit"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    database = "connected"
    try:
        async with session_scope() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        database = "unavailable"
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
    }


@app.get(API_PREFIX)
async def api_root():
    """API v1 root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name} API {settings.api_version}",
        "endpoints": {
            "tax": f"{API_PREFIX}/tax",
            "payroll": f"{API_PREFIX}/payroll",
            "wage_advances": f"{API_PREFIX}/wage-advances",
            "purchase_orders": f"{API_PREFIX}/purchase-orders",
            "approvals": f"{API_PREFIX}/approvals",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
