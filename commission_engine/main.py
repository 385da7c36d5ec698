"""
Commission Engine - commission calculation and lifecycle service

Main FastAPI application with:
- Commission rules (margin, revenue, fixed, tiered)
- Commission lifecycle (pending → approved → paid, cancel, soft delete)
- Period and employee reporting
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select

from commission_engine.api import api_router
from commission_engine.config import settings
from commission_engine.db import get_db_context
from commission_engine.errors import CommissionError, ValidationError
from commission_engine.models import User, UserRole

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Creates the administrator account if no admin exists
    """
    logger.info("Starting Commission Engine...")

    async with get_db_context() as db:
        admin = await db.scalar(
            select(User).where(User.role == UserRole.ADMIN).limit(1)
        )
        if not admin:
            logger.info("Creating administrator account...")
            db.add(User(
                username=settings.admin_username,
                display_name="Administrator",
                role=UserRole.ADMIN,
                permissions=[],
                is_active=True,
            ))
            logger.info(f"Administrator account created: {settings.admin_username}")

    logger.info("Commission Engine started successfully!")

    yield

    logger.info("Shutting down Commission Engine...")


# Create FastAPI application
app = FastAPI(
    title="Commission Engine",
    description="Commission calculation and lifecycle service",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)


@app.exception_handler(CommissionError)
async def commission_error_handler(request: Request, exc: CommissionError):
    """Map domain errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    elif exc.status_code in (401, 403):
        logger.warning(f"{request.method} {request.url.path} refused: {exc.message}")
    errors = exc.errors if isinstance(exc, ValidationError) else [exc.message]
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "errors": errors},
    )


# Include routers
app.include_router(api_router)  # /api/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "commission_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
