"""Trading loop supervisor for FastAPI and the CLI.

Owns the single TradeOrchestrator of the process and the asyncio task it runs
in. ``stop_trading`` is safe to call from other threads (the Telegram bot runs
its own event loop).
"""

import asyncio
import logging

from tradeloop.config import settings
from tradeloop.engine.orchestrator import TradeOrchestrator, TradingConfig
from tradeloop.services.accounts import account_from_key
from tradeloop.services.chain_client import ChainClient
from tradeloop.services.encryption import get_vault
from tradeloop.services.journal import Journal
from tradeloop.services.sizing import build_policy
from tradeloop.services.swap_client import RateLimitedSwapClient, RateLimiter, SwapServiceClient

logger = logging.getLogger(__name__)

_orchestrator: TradeOrchestrator | None = None
_task: asyncio.Task | None = None
_loop: asyncio.AbstractEventLoop | None = None
_running = False


def build_orchestrator(journal: Journal | None = None) -> TradeOrchestrator:
    """Wire the orchestrator and its clients from settings."""
    settings.require_trading()
    config = TradingConfig.from_settings(settings)
    chain = ChainClient(settings.rpc_urls, settings.chain_id)
    swap = RateLimitedSwapClient(
        SwapServiceClient(settings.swap_api_key, settings.swap_api_url),
        RateLimiter(settings.swap_cooldown_ms),
        retry_delay_ms=settings.swap_retry_delay_ms,
        max_attempts=settings.swap_max_attempts,
    )
    return TradeOrchestrator(
        config=config,
        chain=chain,
        swap=swap,
        vault=get_vault(),
        policy=build_policy(settings, settings.token_address),
        main_account=account_from_key(settings.private_key),
        journal=journal or Journal(),
    )


async def close_orchestrator(orchestrator: TradeOrchestrator):
    await orchestrator.swap.close()
    await orchestrator.chain.close()


async def run_trading(orchestrator: TradeOrchestrator | None = None):
    """Run the trading loop to completion in the current event loop."""
    global _orchestrator, _loop, _running
    orchestrator = orchestrator or build_orchestrator()
    _orchestrator = orchestrator
    _loop = asyncio.get_running_loop()
    logger.info(
        f"Trading started: chain={settings.chain} token={orchestrator.config.token_address} "
        f"slots={orchestrator.config.concurrency} policy={orchestrator.policy.name}"
    )
    _running = True
    try:
        await orchestrator.run()
    finally:
        _running = False
        await close_orchestrator(orchestrator)
        logger.info("Trading stopped")


def _on_done(task: asyncio.Task):
    if task.cancelled():
        logger.warning("Trading task cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Trading task failed: {error!r}", exc_info=error)


def start_trading(orchestrator: TradeOrchestrator | None = None) -> asyncio.Task:
    """Start the trading loop as a background task of the running event loop."""
    global _task
    if _task is not None and not _task.done():
        raise RuntimeError("trading loop already running")
    _task = asyncio.get_running_loop().create_task(run_trading(orchestrator), name="trading-loop")
    _task.add_done_callback(_on_done)
    return _task


def stop_trading() -> bool:
    """Request a graceful stop. Returns False when no loop is running."""
    orchestrator = _orchestrator
    if orchestrator is None or orchestrator.stopping:
        return False
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if _loop is not None and running is not _loop:
        _loop.call_soon_threadsafe(orchestrator.stop)
    else:
        orchestrator.stop()
    return True


async def shutdown_trading(timeout: float = 30.0):
    """Stop the loop and wait for the in-flight step to finish."""
    global _task
    stop_trading()
    if _task is None:
        return
    done, _ = await asyncio.wait({_task}, timeout=timeout)
    if not done:
        logger.warning(f"Trading loop did not stop within {timeout}s, cancelling")
        _task.cancel()
    _task = None


def get_trading_status() -> dict:
    """Return current loop state for the API and the Telegram bot."""
    if _orchestrator is None:
        return {"running": False, "stopping": False, "sessions": []}
    status = _orchestrator.status()
    status["running"] = _running
    return status
