import asyncio
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import update
from core.config import settings
from core.logger import setup_logging, logger
from db.session import Database
from models.reward import RewardEvent, REWARD_PENDING, REWARD_FAILED
from services.ledger_client import CentralAccountClient
from services.reward_service import RewardDispatcher


async def retry_rewards(include_failed: bool = False):
    """Deliver every pending reward now, optionally reviving abandoned ones first."""
    setup_logging()
    db = Database()
    ledger = CentralAccountClient()
    dispatcher = RewardDispatcher(db.sessionmaker, ledger)

    try:
        if include_failed:
            async with db.session() as session:
                result = await session.execute(
                    update(RewardEvent)
                    .where(RewardEvent.status == REWARD_FAILED)
                    .values(status=REWARD_PENDING, attempts=0, next_attempt_at=None)
                )
                await session.commit()
                print(f"Re-queued {result.rowcount} failed reward events.")

        # Due regardless of backoff
        async with db.session() as session:
            await session.execute(
                update(RewardEvent)
                .where(RewardEvent.status == REWARD_PENDING)
                .values(next_attempt_at=RewardEvent.created_at)
            )
            await session.commit()

        total = 0
        while True:
            delivered = await dispatcher.deliver_pending(limit=settings.REWARD_RETRY_BATCH_SIZE)
            total += delivered
            if delivered < settings.REWARD_RETRY_BATCH_SIZE:
                break
        print(f"Delivered {total} reward events.")
        logger.info("Manual reward retry finished", delivered=total)
    finally:
        await ledger.aclose()
        await db.dispose()


if __name__ == "__main__":
    asyncio.run(retry_rewards(include_failed="--include-failed" in sys.argv))
