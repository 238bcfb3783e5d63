"""
Site Audit - FastAPI Backend
Main application entry point with health check and API routing.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_settings
from database import engine, Base
import models  # noqa: F401
from routers import health, audit, notifications
from services.audit_queue import recover_stalled_audits


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Site Audit API...")
    validate_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        recovered = await recover_stalled_audits(settings.STALLED_AUDIT_MINUTES)
        if recovered:
            print(f"♻️ Recovered {recovered} stalled audits after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled audit recovery skipped: {exc}")
    yield
    # Shutdown
    print("👋 Shutting down API...")


app = FastAPI(
    title="Site Audit API",
    description="Audit websites across SEO, performance, accessibility, security and more",
    version="0.1.0",
    lifespan=lifespan,
)

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
app.include_router(audit.router, prefix="/audits", tags=["Audits"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Site Audit API",
        "version": "0.1.0",
        "status": "running"
    }
