"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import database, ensure_indexes
from app.routers import auth, debug, events, gifts, goals, hints, redemptions, sessions, webhooks
from app.services.session_timer import session_timers

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    # Startup
    await database.connect()
    await ensure_indexes(database.db)
    ticker = asyncio.create_task(session_timers.run(settings.timer_tick_seconds))
    logger.info("Ernit challenge service started")
    yield
    # Shutdown
    ticker.cancel()
    with suppress(asyncio.CancelledError):
        await ticker
    await database.disconnect()


app = FastAPI(
    title="Ernit Challenge Service API",
    description="Goal progression, claim redemption and Valentine challenges",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(goals.router)
app.include_router(sessions.router)
app.include_router(hints.router)
app.include_router(redemptions.router)
app.include_router(gifts.router)
app.include_router(webhooks.router)
app.include_router(events.router)
if settings.debug:
    app.include_router(debug.router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {"status": "ok", "message": "Ernit Challenge Service API"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
