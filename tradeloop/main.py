"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tradeloop.config import settings
from tradeloop.database import create_db_and_tables
from tradeloop.utils.logging import setup_logging
from tradeloop.api import trades, system


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()
    # Fails fast on missing settings before any account is generated
    from tradeloop.engine.scheduler import build_orchestrator, start_trading, shutdown_trading
    start_trading(build_orchestrator())

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from tradeloop.services.telegram_bot import init_bot
        telegram_bot = init_bot()
        telegram_bot.start()

    yield

    if telegram_bot:
        telegram_bot.stop()
    await shutdown_trading()


app = FastAPI(
    title="Trade Loop",
    description="Sub-account volume trading loop with operator API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(trades.router)
app.include_router(system.router)
