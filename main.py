import asyncio
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.config import settings
from core.logger import setup_logging, logger
from db.session import Database
from services.ledger_client import CentralAccountClient
from services.reward_service import RewardDispatcher


async def start_api():
    import uvicorn
    from api.main import app
    config = uvicorn.Config(app, host=settings.API_HOST, port=settings.API_PORT, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()


def start_scheduler(dispatcher: RewardDispatcher) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()

    # Retry reward events whose backoff has elapsed
    scheduler.add_job(
        dispatcher.deliver_pending,
        trigger="interval",
        seconds=settings.REWARD_RETRY_INTERVAL_SECONDS,
        id=settings.REWARD_RETRY_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started (Reward retry).", interval=settings.REWARD_RETRY_INTERVAL_SECONDS)
    return scheduler


async def run_worker():
    db = Database()
    ledger = CentralAccountClient()
    dispatcher = RewardDispatcher(db.sessionmaker, ledger)
    scheduler = start_scheduler(dispatcher)
    try:
        # Runs until cancelled
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await dispatcher.drain()
        await ledger.aclose()
        await db.dispose()


async def main():
    mode = "all"
    if len(sys.argv) > 1:
        if "api" in sys.argv: mode = "api"
        elif "worker" in sys.argv: mode = "worker"

    setup_logging()

    if mode == "api":
        logger.info("Starting API Only Mode...", env=settings.ENV)
        await start_api()
    elif mode == "worker":
        logger.info("Starting Reward Worker Mode...", env=settings.ENV)
        await run_worker()
    else:
        logger.info("Starting All (API + Reward Worker)...", env=settings.ENV)
        await asyncio.gather(start_api(), run_worker())


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
