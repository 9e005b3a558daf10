"""
UID Bypass Dashboard - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import async_session_maker, engine, Base
from errors import AppError, app_error_handler
import models  # noqa: F401
from routers import (
    health,
    auth,
    users,
    uids,
    api_settings,
    activity,
    api_keys,
    integration,
)
from services.bootstrap import bootstrap

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting UID Bypass Dashboard API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        seeded = await bootstrap(async_session_maker)
        if seeded["owner_created"]:
            print(f"👤 Default owner '{settings.DEFAULT_OWNER_USERNAME}' created.")
        if seeded["settings_seeded"]:
            print("🔑 External API settings seeded from environment.")
    except Exception as exc:
        print(f"⚠️ Startup seeding skipped: {exc}")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="UID Bypass Dashboard API",
    description="Manage bypass UIDs, user credits and integration keys",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(AppError, app_error_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(uids.router, prefix="/uids", tags=["UIDs"])
app.include_router(api_settings.router, prefix="/settings", tags=["Settings"])
app.include_router(activity.router, prefix="/activity", tags=["Activity"])
app.include_router(api_keys.router, prefix="/api-keys", tags=["API Keys"])
app.include_router(integration.router, tags=["Integration"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "UID Bypass Dashboard API",
        "version": "0.1.0",
        "status": "running"
    }
