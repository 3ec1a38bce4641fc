"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers the import router.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routers import imports
from .core.config import settings
from .core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the CRM and import tables on startup."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
        yield
        return

    from .db import models  # noqa: F401  registers the mapped tables
    from .db.session import Base, get_engine

    try:
        Base.metadata.create_all(bind=get_engine())
        logger.info("Database tables ready")
    except Exception:
        logger.exception("Failed to initialize database tables")
        raise

    yield


app = FastAPI(
    title="CRM Import API",
    version="1.0.0",
    description="Bulk CSV import of contacts, companies, leads and deals",
    lifespan=lifespan,
)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports.router)


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "crm-import-api",
    }
