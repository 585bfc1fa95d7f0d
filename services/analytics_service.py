from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from models.attempt import Attempt
from models.quiz import QuizPost
from models.score import ScoreEntry
from core.config import settings
from core.result import ActionResult, NOT_FOUND
from utils.analytics import aggregate_quiz_analytics


class AnalyticsService:
    """Admin reporting. Everything is recomputed from history on each call."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_quiz_analytics(self, quiz_id: str) -> ActionResult:
        quiz = await self.db.get(QuizPost, quiz_id)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)

        attempts = (await self.db.execute(
            select(Attempt).filter(Attempt.quiz_post_id == quiz_id).order_by(Attempt.created_at.desc())
        )).scalars().all()
        score_entries = (await self.db.execute(
            select(ScoreEntry).filter(ScoreEntry.quiz_post_id == quiz_id).order_by(ScoreEntry.created_at.desc())
        )).scalars().all()

        analytics = aggregate_quiz_analytics(attempts, score_entries)
        return ActionResult.ok(
            quiz=quiz,
            analytics=analytics,
            score_entries=list(score_entries),
            recent_attempts=list(attempts[:settings.RECENT_ATTEMPTS_LIMIT]),
        )
