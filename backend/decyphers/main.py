"""Decyphers: FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from decyphers.api.v1.affiliate import router as affiliate_router
from decyphers.api.v1.auth import router as auth_router
from decyphers.api.v1.forex import router as forex_router
from decyphers.api.v1.history import router as history_router
from decyphers.api.v1.referral_tiers import router as referral_tiers_router
from decyphers.api.v1.referrals import router as referrals_router
from decyphers.api.v1.schedule_tasks import router as schedule_tasks_router
from decyphers.api.v1.smtp_configurations import router as smtp_configurations_router
from decyphers.api.v1.subscriptions import router as subscriptions_router
from decyphers.api.v1.telegram import router as telegram_router
from decyphers.api.v1.tokens import router as tokens_router
from decyphers.api.v1.webhooks import router as webhooks_router
from decyphers.config import settings
from decyphers.exceptions import register_exception_handlers

# Root logger for all decyphers.* loggers; output goes to stderr
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    from decyphers.database import engine

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Subscription billing, token credits and scheduled chart analysis for forex traders.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth_router)
app.include_router(subscriptions_router)
app.include_router(tokens_router)
app.include_router(referrals_router)
app.include_router(referral_tiers_router)
app.include_router(affiliate_router)
app.include_router(schedule_tasks_router)
app.include_router(history_router)
app.include_router(smtp_configurations_router)
app.include_router(telegram_router)
app.include_router(forex_router)
app.include_router(webhooks_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
