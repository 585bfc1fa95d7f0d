from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from models.attempt import Attempt, Answer
from models.score import ScoreEntry
from core.config import settings
from core.logger import logger
from core.result import ActionResult, NOT_FOUND, VALIDATION, CONFLICT, EXTERNAL
from services.quiz_service import QuizService
from utils.hashing import hash_email, normalize_email
from utils.scoring import correct_choice_id


class ScoreService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.quizzes = QuizService(db)

    async def save_score(
        self,
        attempt_id: str,
        player_name: str,
        email: Optional[str] = None,
        account_id: Optional[str] = None,
        quiz_slug: Optional[str] = None,
    ) -> ActionResult:
        """Opt-in leaderboard entry for a finished attempt (at most one per attempt)."""
        attempt = await self.db.get(Attempt, attempt_id, populate_existing=True)
        if not attempt:
            return ActionResult.fail("Attempt not found", code=NOT_FOUND)
        if quiz_slug is not None:
            quiz = await self.quizzes.get_published_quiz(quiz_slug)
            if not quiz or quiz.id != attempt.quiz_post_id:
                return ActionResult.fail("Attempt not found", code=NOT_FOUND)
        if attempt.finished_at is None:
            return ActionResult.fail("Attempt is not finished", code=VALIDATION)

        existing = await self.db.execute(select(ScoreEntry.id).filter(ScoreEntry.attempt_id == attempt_id))
        if existing.scalar_one_or_none():
            return ActionResult.fail("Score already saved", code=CONFLICT)

        email = normalize_email(email) if email and email.strip() else None
        entry = ScoreEntry(
            quiz_post_id=attempt.quiz_post_id,
            attempt_id=attempt.id,
            device_hash=attempt.device_hash,
            account_id=account_id or attempt.account_id,
            player_name=player_name,
            email=email,
            email_hash=hash_email(email) if email else None,
            score=attempt.score,
            max_score=attempt.max_score,
        )
        self.db.add(entry)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent save for the same attempt
            await self.db.rollback()
            return ActionResult.fail("Score already saved", code=CONFLICT)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to save score", attempt_id=attempt_id, error=str(e))
            return ActionResult.fail("Failed to save score", code=EXTERNAL)

        logger.info("Score saved", attempt_id=attempt.id, quiz_id=attempt.quiz_post_id, score=attempt.score)
        return ActionResult.ok(score_entry_id=entry.id)

    async def get_attempt_result(self, quiz_slug: str, attempt_id: str) -> ActionResult:
        """Attempt outcome with the selected and correct choice for every question."""
        attempt = await self.db.get(Attempt, attempt_id, populate_existing=True)
        if not attempt:
            return ActionResult.fail("Attempt not found", code=NOT_FOUND)

        quiz = await self.quizzes.get_quiz(attempt.quiz_post_id)
        if not quiz or quiz.slug != quiz_slug:
            return ActionResult.fail("Attempt not found", code=NOT_FOUND)

        rows = await self.db.execute(select(Answer).filter(Answer.attempt_id == attempt.id))
        selected = {a.question_id: a.choice_id for a in rows.scalars().all()}

        questions = []
        for question in quiz.questions:
            correct_id = correct_choice_id(question)
            chosen_id = selected.get(question.id)
            questions.append({
                "question_id": question.id,
                "text": question.text,
                "points": question.points,
                "selected_choice_id": chosen_id,
                "correct_choice_id": correct_id,
                "is_correct": chosen_id is not None and chosen_id == correct_id,
                "choices": [{"id": c.id, "text": c.text} for c in question.choices],
            })

        return ActionResult.ok(attempt=attempt, quiz=quiz, questions=questions)

    async def get_leaderboard(self, quiz_slug: str, limit: int = None) -> ActionResult:
        quiz = await self.quizzes.get_published_quiz(quiz_slug)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)

        result = await self.db.execute(
            select(ScoreEntry)
            .filter(ScoreEntry.quiz_post_id == quiz.id)
            .order_by(ScoreEntry.score.desc(), ScoreEntry.created_at.asc())
            .limit(limit or settings.LEADERBOARD_LIMIT)
        )
        entries = result.scalars().all()
        return ActionResult.ok(quiz_id=quiz.id, entries=[{
            "rank": i,
            "name": e.player_name,
            "score": e.score,
            "max_score": e.max_score,
            "created_at": e.created_at,
        } for i, e in enumerate(entries, 1)])
