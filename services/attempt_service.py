from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from models.attempt import Attempt, Answer
from core.logger import logger
from core.result import ActionResult, NOT_FOUND, CONFLICT, EXTERNAL
from db.session import safe_commit
from services.quiz_service import QuizService
from services.reward_service import RewardService, RewardDispatcher
from services.user_service import UserService
from utils.hashing import hash_device_id, normalize_email
from utils.scoring import SubmittedAnswer, calculate_score, first_answers


@dataclass(frozen=True)
class PlayerAccount:
    """An authenticated player, as resolved from the central session."""
    email: str
    name: Optional[str] = None
    account_id: Optional[str] = None


class AttemptService:
    """
    Attempt lifecycle: PENDING on start, FINISHED exactly once on submit.

    A finished attempt is never written again. Rewards are staged in the same
    transaction as the finished attempt and delivered after commit.
    """

    def __init__(
        self,
        db: AsyncSession,
        user_service: Optional[UserService] = None,
        dispatcher: Optional[RewardDispatcher] = None,
    ):
        self.db = db
        self.quizzes = QuizService(db)
        self.rewards = RewardService(db)
        self.user_service = user_service
        self.dispatcher = dispatcher

    async def get_attempt(self, attempt_id: str) -> Optional[Attempt]:
        return await self.db.get(Attempt, attempt_id, populate_existing=True)

    async def start_attempt(
        self,
        quiz_slug: str,
        player_name: str,
        raw_device_id: str,
        account: Optional[PlayerAccount] = None,
    ) -> ActionResult:
        quiz = await self.quizzes.get_published_quiz(quiz_slug)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)
        # Resolving the account may commit or roll back the session
        quiz_id = quiz.id

        account_id = None
        player_email = None
        if account:
            player_email = normalize_email(account.email)
            if self.user_service:
                account_id = await self.user_service.get_or_create_account_id(
                    account.email, account.name, account.account_id
                )
            else:
                account_id = account.account_id

        now = datetime.utcnow()
        attempt = Attempt(
            quiz_post_id=quiz_id,
            account_id=account_id,
            player_email=player_email,
            device_hash=hash_device_id(raw_device_id),
            player_name=player_name,
            score=0,
            max_score=0,
            started_at=now,
            finished_at=None,
        )
        self.db.add(attempt)
        error = await safe_commit(self.db, "start attempt")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)

        logger.info("Attempt started", attempt_id=attempt.id, quiz_id=quiz_id, has_account=bool(account_id))
        return ActionResult.ok(attempt_id=attempt.id)

    def _answer_rows(self, attempt_id: str, questions: List, answers: Iterable[SubmittedAnswer]) -> List[Answer]:
        """One row per quiz question present in the submission, first pair wins."""
        selected = first_answers(answers)
        rows = []
        for question in questions:
            if question.id not in selected:
                continue
            choice_id = selected[question.id]
            if choice_id not in {c.id for c in question.choices}:
                choice_id = None
            rows.append(Answer(attempt_id=attempt_id, question_id=question.id, choice_id=choice_id))
        return rows

    async def submit_attempt(self, attempt_id: str, quiz_slug: str, answers: Iterable[SubmittedAnswer]) -> ActionResult:
        answers = list(answers)
        attempt = await self.get_attempt(attempt_id)
        if not attempt:
            return ActionResult.fail("Attempt not found", code=NOT_FOUND)

        # Always score against the stored definition, never client data
        quiz = await self.quizzes.get_published_quiz(quiz_slug)
        if not quiz or quiz.id != attempt.quiz_post_id:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)

        # A rollback expires loaded rows; keep plain values for the failure paths
        attempt_id = attempt.id
        quiz_id = quiz.id
        result = calculate_score(quiz.questions, answers)
        already_completed = await self.rewards.has_completed_before(attempt.account_id, quiz_id, attempt_id)

        finished_at = datetime.utcnow()
        try:
            # Conditional PENDING -> FINISHED transition
            updated = await self.db.execute(
                update(Attempt)
                .where(Attempt.id == attempt_id, Attempt.finished_at.is_(None))
                .values(score=result.score, max_score=result.max_score, finished_at=finished_at)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 0:
                await self.db.rollback()
                logger.warning("Attempt already submitted", attempt_id=attempt_id)
                return ActionResult.fail("Attempt already submitted", code=CONFLICT)

            self.db.add_all(self._answer_rows(attempt_id, quiz.questions, answers))

            reward_event = None
            if attempt.account_id and not already_completed:
                reward_event = self.rewards.enqueue(attempt, result)

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to finish attempt", attempt_id=attempt_id, error=str(e))
            return ActionResult.fail("Failed to save attempt", code=EXTERNAL)

        logger.info("Attempt finished", attempt_id=attempt_id, quiz_id=quiz_id,
                    score=result.score, max_score=result.max_score, already_completed=already_completed)

        if reward_event is not None and self.dispatcher is not None:
            self.dispatcher.schedule(reward_event.id)

        return ActionResult.ok(
            attempt_id=attempt_id,
            score=result.score,
            max_score=result.max_score,
            correct_count=result.correct_count,
            percentage=round(result.percentage, 1),
            already_completed_before=already_completed,
        )
