from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from replayguard.core.config import settings
from replayguard.core.exceptions import validation_exception_handler
from replayguard.core.logging import configure_logging
from replayguard.core.replay_middleware import add_replay_protection
from replayguard.api.v1 import commands, health


configure_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await guard.store.close()


app = FastAPI(
    title=settings.APP_NAME,
    description="Replay attack protection for state-changing HTTP requests.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

guard = add_replay_protection(app)


# ─────────────────────────────────────────────
# Exception handlers
# ─────────────────────────────────────────────
app.add_exception_handler(RequestValidationError, validation_exception_handler)


# ─────────────────────────────────────────────
# API v1 routes
# ─────────────────────────────────────────────
app.include_router(health.router, prefix=settings.API_V1_PREFIX, tags=["health"])
app.include_router(commands.router, prefix=settings.API_V1_PREFIX, tags=["commands"])
