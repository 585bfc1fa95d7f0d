import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.logger import logger
from models.attempt import Attempt
from models.reward import RewardEvent, REWARD_PENDING, REWARD_DELIVERED, REWARD_FAILED
from services.ledger_client import CentralAccountClient, LedgerError
from utils.scoring import ScoreResult

EVENT_QUIZ_COMPLETED = "quiz_completed"
EVENT_PERFECT_SCORE = "perfect_score"


@dataclass(frozen=True)
class RewardGrant:
    event_type: str
    coins: int
    tokens: int
    xp: int
    metadata: Dict[str, Any] = field(default_factory=dict)


def build_reward(quiz_id: str, result: ScoreResult, now: datetime = None) -> RewardGrant:
    """
    Completion reward: flat coins and XP, one token per correct answer,
    plus a bonus when every point was earned.
    """
    now = now or datetime.utcnow()
    tokens = result.correct_count
    if result.is_perfect:
        tokens += settings.REWARD_PERFECT_BONUS_TOKENS

    return RewardGrant(
        event_type=EVENT_PERFECT_SCORE if result.is_perfect else EVENT_QUIZ_COMPLETED,
        coins=settings.REWARD_COINS,
        tokens=tokens,
        xp=settings.REWARD_XP,
        metadata={
            "quizId": quiz_id,
            "score": result.score,
            "maxScore": result.max_score,
            "correctAnswers": result.correct_count,
            "percentage": f"{result.percentage:.1f}",
            "isPerfect": result.is_perfect,
            "timestamp": now.isoformat() + "Z",
        },
    )


def backoff_seconds(attempts: int) -> int:
    delay = settings.REWARD_BACKOFF_BASE_SECONDS * (2 ** max(attempts - 1, 0))
    return min(delay, settings.REWARD_BACKOFF_MAX_SECONDS)


class RewardService:
    """Eligibility checks and outbox writes, inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def has_completed_before(self, account_id: Optional[str], quiz_id: str, attempt_id: str) -> bool:
        """True when another finished attempt exists for this account and quiz."""
        if not account_id:
            return False
        result = await self.db.execute(
            select(func.count(Attempt.id)).filter(
                Attempt.account_id == account_id,
                Attempt.quiz_post_id == quiz_id,
                Attempt.id != attempt_id,
                Attempt.finished_at.is_not(None),
            )
        )
        return (result.scalar() or 0) > 0

    def enqueue(self, attempt: Attempt, result: ScoreResult) -> RewardEvent:
        """Stage a reward event; it is persisted by the caller's commit."""
        grant = build_reward(attempt.quiz_post_id, result)
        event = RewardEvent(
            attempt_id=attempt.id,
            account_id=attempt.account_id,
            quiz_post_id=attempt.quiz_post_id,
            event_type=grant.event_type,
            coins=grant.coins,
            tokens=grant.tokens,
            xp=grant.xp,
            payload=grant.metadata,
            status=REWARD_PENDING,
            attempts=0,
            # Immediate delivery is scheduled after commit; the retry job only picks it up if that fails
            next_attempt_at=datetime.utcnow() + timedelta(seconds=settings.REWARD_BACKOFF_BASE_SECONDS),
        )
        self.db.add(event)
        return event


class RewardDispatcher:
    """
    Delivers committed reward events to the central ledger in the background.

    Each delivery runs on its own session. Failures are logged and rescheduled
    with exponential backoff; they never propagate to the submission that
    produced the event.
    """

    def __init__(self, session_factory: async_sessionmaker, ledger: CentralAccountClient):
        self.session_factory = session_factory
        self.ledger = ledger
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, event_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.deliver(event_id))
        self._tasks.add(task)
        task.add_done_callback(self._cleanup_task)
        logger.debug("Reward delivery scheduled", event_id=event_id)
        return task

    def _cleanup_task(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Reward delivery task crashed", error=str(task.exception()))

    async def drain(self):
        """Wait for every in-flight delivery (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def deliver(self, event_id: str) -> bool:
        async with self.session_factory() as db:
            event = await db.get(RewardEvent, event_id, with_for_update=True)
            if not event or event.status != REWARD_PENDING:
                return False
            return await self._deliver(db, event)

    async def _deliver(self, db: AsyncSession, event: RewardEvent) -> bool:
        try:
            await self.ledger.record_activity(
                account_id=event.account_id,
                event_type=event.event_type,
                coins=event.coins,
                tokens=event.tokens,
                xp=event.xp,
                metadata=event.payload,
            )
        except Exception as e:
            if not isinstance(e, LedgerError):
                logger.exception("Unexpected reward delivery error", event_id=event.id)
            event.attempts += 1
            event.last_error = str(e)
            if event.attempts >= settings.REWARD_MAX_ATTEMPTS:
                event.status = REWARD_FAILED
                event.next_attempt_at = None
                logger.error("Reward delivery abandoned", event_id=event.id, attempts=event.attempts, error=str(e))
            else:
                event.next_attempt_at = datetime.utcnow() + timedelta(seconds=backoff_seconds(event.attempts))
                logger.warning("Reward delivery failed, will retry", event_id=event.id,
                               attempts=event.attempts, retry_at=event.next_attempt_at.isoformat())
            await db.commit()
            return False

        event.attempts += 1
        event.status = REWARD_DELIVERED
        event.delivered_at = datetime.utcnow()
        event.next_attempt_at = None
        event.last_error = None
        await db.commit()
        logger.info("Reward delivered", event_id=event.id, account_id=event.account_id,
                    event_type=event.event_type, tokens=event.tokens)
        return True

    async def deliver_pending(self, limit: int = None) -> int:
        """
        Retry every pending event that is due. Returns how many were delivered.

        Only ids are read here; each event is locked and re-checked in its own
        transaction by deliver(), so concurrent runs never send one event twice.
        """
        limit = limit or settings.REWARD_RETRY_BATCH_SIZE
        now = datetime.utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                select(RewardEvent.id)
                .filter(RewardEvent.status == REWARD_PENDING, RewardEvent.next_attempt_at <= now)
                .order_by(RewardEvent.next_attempt_at.asc())
                .limit(limit)
            )
            event_ids = result.scalars().all()

        if event_ids:
            logger.info(f"Reward retry: {len(event_ids)} pending events due")
        delivered = 0
        for event_id in event_ids:
            if await self.deliver(event_id):
                delivered += 1
        return delivered
