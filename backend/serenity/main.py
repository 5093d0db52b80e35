# serenity insights backend api
# fastapi app with async mongodb analytics and gemini insight agents

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from serenity.config import settings
from serenity.errors import DataAccessError
from serenity.services.db import db
from serenity.routers import dashboard

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """startup: connect to mongodb. shutdown: close connection."""
    logger.info("Starting Serenity insights backend...")
    try:
        await db.connect()
    except DataAccessError as e:
        # the gateway connects lazily, so keep serving and retry on first request
        logger.error(f"MongoDB not available at startup: {e}")
    logger.info("Serenity insights backend ready")
    yield
    logger.info("Shutting down Serenity insights backend...")
    await db.close()


app = FastAPI(
    title="Serenity Insights API",
    description="Analytics dashboard for the Serenity mental health chat app — aggregated statistics and AI insights",
    version="0.1.0",
    lifespan=lifespan,
)

# cors — allow frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# register routers
app.include_router(dashboard.router)


@app.get("/health")
async def health_check():
    """basic health check endpoint"""
    return {"status": "ok", "service": "serenity-insights-api"}
