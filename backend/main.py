"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import accounts, connections, oauth, providers, sync
from config import settings
from database import init_db
from logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables on startup."""
    try:
        init_db()
    except Exception:
        logger.error("Database initialization failed on startup", exc_info=True)
        raise
    logger.info("LedgerLink started (%s)", settings.ENVIRONMENT)
    yield


app = FastAPI(
    title="LedgerLink",
    description="Multi-tenant banking aggregator sync",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(accounts.router)
app.include_router(connections.router)
app.include_router(oauth.router)
app.include_router(providers.router)
app.include_router(sync.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
