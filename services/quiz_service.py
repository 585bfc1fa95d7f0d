from datetime import datetime
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from sqlalchemy.orm import selectinload
from models.quiz import QuizPost, Question, Choice, STATUS_DRAFT, STATUS_PUBLISHED
from models.attempt import Attempt, Answer
from models.score import ScoreEntry
from models.reward import RewardEvent
from core.logger import logger
from core.config import settings
from core.result import ActionResult, NOT_FOUND, VALIDATION, EXTERNAL
from db.session import safe_commit
from utils.scoring import sort_by_order
from utils.validation import validate_quiz_for_publish, slugify, next_available_slug

_UNSET = object()


def sort_quiz(quiz: QuizPost) -> QuizPost:
    """Order questions and their choices by `order` (stable for ties)."""
    quiz.questions = sort_by_order(quiz.questions)
    for question in quiz.questions:
        question.choices = sort_by_order(question.choices)
    return quiz


class QuizService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # === Reads ===

    def _quiz_query(self):
        return (
            select(QuizPost)
            .options(selectinload(QuizPost.questions).selectinload(Question.choices))
            .execution_options(populate_existing=True)
        )

    async def get_quiz(self, quiz_id: str) -> Optional[QuizPost]:
        """Quiz with ordered questions and choices."""
        result = await self.db.execute(self._quiz_query().filter(QuizPost.id == quiz_id))
        quiz = result.scalar_one_or_none()
        return sort_quiz(quiz) if quiz else None

    async def get_published_quiz(self, slug: str) -> Optional[QuizPost]:
        result = await self.db.execute(
            self._quiz_query().filter(QuizPost.slug == slug, QuizPost.status == STATUS_PUBLISHED)
        )
        quiz = result.scalar_one_or_none()
        return sort_quiz(quiz) if quiz else None

    async def list_quizzes(self) -> List[QuizPost]:
        result = await self.db.execute(
            self._quiz_query().order_by(QuizPost.created_at.desc())
        )
        return [sort_quiz(q) for q in result.scalars().all()]

    async def list_public_quizzes(self) -> List[QuizPost]:
        result = await self.db.execute(
            self._quiz_query()
            .filter(QuizPost.status == STATUS_PUBLISHED, QuizPost.is_active == True)
            .order_by(QuizPost.published_at.desc())
        )
        return [sort_quiz(q) for q in result.scalars().all()]

    async def _get_question(self, question_id: str) -> Optional[Question]:
        result = await self.db.execute(
            select(Question)
            .options(selectinload(Question.choices))
            .filter(Question.id == question_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_choice(self, choice_id: str) -> Optional[Choice]:
        result = await self.db.execute(
            select(Choice).options(selectinload(Choice.question)).filter(Choice.id == choice_id)
        )
        return result.scalar_one_or_none()

    # === Quiz ===

    async def create_quiz(self, title: str, author_id: str = None, author_email: str = None) -> ActionResult:
        quiz = QuizPost(
            title=title,
            author_id=author_id,
            author_email=author_email,
            status=STATUS_DRAFT,
            theme={},
        )
        self.db.add(quiz)
        error = await safe_commit(self.db, "create quiz")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        logger.info("Quiz created", quiz_id=quiz.id, title=title)
        return ActionResult.ok(quiz_id=quiz.id)

    async def generate_unique_slug(self, title: str, exclude_quiz_id: str = None) -> str:
        base = slugify(title)
        query = select(QuizPost.slug).filter(QuizPost.slug.like(f"{base}%"))
        if exclude_quiz_id:
            query = query.filter(QuizPost.id != exclude_quiz_id)
        taken = (await self.db.execute(query)).scalars().all()
        return next_available_slug(base, taken)

    async def update_quiz_meta(
        self,
        quiz_id: str,
        title: Optional[str] = None,
        description=_UNSET,
        theme=_UNSET,
        icon=_UNSET,
        gradient=_UNSET,
    ) -> ActionResult:
        """Update display fields. Renaming a published quiz regenerates its slug."""
        quiz = await self.db.get(QuizPost, quiz_id)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)

        if title is not None:
            if not title.strip():
                return ActionResult.fail("Title is required", code=VALIDATION,
                                         errors=[{"field": "title", "message": "Title is required"}])
            if title != quiz.title and quiz.status == STATUS_PUBLISHED:
                quiz.slug = await self.generate_unique_slug(title, exclude_quiz_id=quiz.id)
            quiz.title = title
        if description is not _UNSET:
            quiz.description = description
        if theme is not _UNSET:
            quiz.theme = theme
        if icon is not _UNSET:
            quiz.icon = icon
        if gradient is not _UNSET:
            quiz.gradient = gradient

        error = await safe_commit(self.db, "update quiz")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        logger.info("Quiz updated", quiz_id=quiz_id)
        return ActionResult.ok(quiz_id=quiz.id, slug=quiz.slug)

    async def delete_quiz(self, quiz_id: str) -> ActionResult:
        quiz = await self.get_quiz(quiz_id)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)

        # Delete play history first to avoid foreign key constraints
        attempt_ids = select(Attempt.id).where(Attempt.quiz_post_id == quiz_id)
        await self.db.execute(delete(RewardEvent).where(RewardEvent.quiz_post_id == quiz_id))
        await self.db.execute(delete(ScoreEntry).where(ScoreEntry.quiz_post_id == quiz_id))
        await self.db.execute(delete(Answer).where(Answer.attempt_id.in_(attempt_ids)))
        await self.db.execute(delete(Attempt).where(Attempt.quiz_post_id == quiz_id))

        # Questions and choices cascade
        await self.db.delete(quiz)
        error = await safe_commit(self.db, "delete quiz")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        logger.info("Quiz deleted", quiz_id=quiz_id)
        return ActionResult.ok(quiz_id=quiz_id)

    async def publish_quiz(self, quiz_id: str) -> ActionResult:
        quiz = await self.get_quiz(quiz_id)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)

        errors = validate_quiz_for_publish(quiz)
        if errors:
            logger.info("Quiz publish rejected", quiz_id=quiz_id, errors=len(errors))
            return ActionResult.fail(
                "Quiz is not ready to publish",
                code=VALIDATION,
                errors=[e.to_dict() for e in errors],
            )

        quiz.slug = await self.generate_unique_slug(quiz.title, exclude_quiz_id=quiz.id)
        quiz.status = STATUS_PUBLISHED
        quiz.published_at = datetime.utcnow()

        error = await safe_commit(self.db, "publish quiz")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        logger.info("Quiz published", quiz_id=quiz_id, slug=quiz.slug)
        return ActionResult.ok(quiz_id=quiz.id, slug=quiz.slug)

    async def unpublish_quiz(self, quiz_id: str) -> ActionResult:
        quiz = await self.db.get(QuizPost, quiz_id)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)
        quiz.status = STATUS_DRAFT
        # Slugs only exist while published
        quiz.slug = None
        error = await safe_commit(self.db, "unpublish quiz")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        logger.info("Quiz unpublished", quiz_id=quiz_id)
        return ActionResult.ok(quiz_id=quiz.id)

    async def set_active(self, quiz_id: str, is_active: bool) -> ActionResult:
        quiz = await self.db.get(QuizPost, quiz_id)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)
        quiz.is_active = is_active
        error = await safe_commit(self.db, "update quiz visibility")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        return ActionResult.ok(quiz_id=quiz.id, is_active=quiz.is_active)

    # === Questions ===

    async def add_question(self, quiz_id: str, text: str) -> ActionResult:
        quiz = await self.db.get(QuizPost, quiz_id)
        if not quiz:
            return ActionResult.fail("Quiz not found", code=NOT_FOUND)

        max_order = (await self.db.execute(
            select(func.max(Question.order)).filter(Question.quiz_post_id == quiz_id)
        )).scalar()

        question = Question(
            quiz_post_id=quiz_id,
            text=text,
            order=0 if max_order is None else max_order + 1,
            points=1,
        )
        self.db.add(question)
        error = await safe_commit(self.db, "add question")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        return ActionResult.ok(question_id=question.id)

    async def update_question(self, question_id: str, text: Optional[str] = None, points: Optional[int] = None) -> ActionResult:
        question = await self.db.get(Question, question_id)
        if not question:
            return ActionResult.fail("Question not found", code=NOT_FOUND)
        if points is not None and points < 1:
            return ActionResult.fail("Points must be at least 1", code=VALIDATION,
                                     errors=[{"field": "points", "message": "Points must be at least 1"}])
        if text is not None:
            question.text = text
        if points is not None:
            question.points = points
        error = await safe_commit(self.db, "update question")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        return ActionResult.ok(question_id=question.id, quiz_id=question.quiz_post_id)

    async def delete_question(self, question_id: str) -> ActionResult:
        question = await self._get_question(question_id)
        if not question:
            return ActionResult.fail("Question not found", code=NOT_FOUND)
        quiz_id = question.quiz_post_id
        await self.db.delete(question)
        error = await safe_commit(self.db, "delete question")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        return ActionResult.ok(question_id=question_id, quiz_id=quiz_id)

    async def reorder_questions(self, quiz_id: str, question_ids: List[str]) -> ActionResult:
        result = await self.db.execute(select(Question).filter(Question.quiz_post_id == quiz_id))
        questions = {q.id: q for q in result.scalars().all()}
        unknown = [qid for qid in question_ids if qid not in questions]
        if unknown:
            return ActionResult.fail("Question not found", code=NOT_FOUND)

        for index, question_id in enumerate(question_ids):
            questions[question_id].order = index
        error = await safe_commit(self.db, "reorder questions")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        return ActionResult.ok(quiz_id=quiz_id)

    # === Choices ===

    async def add_choice(self, question_id: str, text: str) -> ActionResult:
        question = await self._get_question(question_id)
        if not question:
            return ActionResult.fail("Question not found", code=NOT_FOUND)

        if len(question.choices) >= settings.MAX_CHOICES_PER_QUESTION:
            return ActionResult.fail(f"Maximum {settings.MAX_CHOICES_PER_QUESTION} choices allowed", code=VALIDATION)

        max_order = max((c.order for c in question.choices), default=-1)
        choice = Choice(question_id=question_id, text=text, order=max_order + 1, is_correct=False)
        self.db.add(choice)
        error = await safe_commit(self.db, "add choice")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        return ActionResult.ok(choice_id=choice.id, quiz_id=question.quiz_post_id)

    async def update_choice(self, choice_id: str, text: Optional[str] = None, is_correct: Optional[bool] = None) -> ActionResult:
        """Marking a choice correct clears the flag on its siblings."""
        choice = await self._get_choice(choice_id)
        if not choice:
            return ActionResult.fail("Choice not found", code=NOT_FOUND)

        if is_correct is True:
            siblings = await self.db.execute(
                select(Choice).filter(Choice.question_id == choice.question_id, Choice.id != choice.id)
            )
            for sibling in siblings.scalars().all():
                sibling.is_correct = False

        if text is not None:
            choice.text = text
        if is_correct is not None:
            choice.is_correct = is_correct

        error = await safe_commit(self.db, "update choice")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        return ActionResult.ok(choice_id=choice.id, quiz_id=choice.question.quiz_post_id)

    async def delete_choice(self, choice_id: str) -> ActionResult:
        choice = await self._get_choice(choice_id)
        if not choice:
            return ActionResult.fail("Choice not found", code=NOT_FOUND)
        quiz_id = choice.question.quiz_post_id
        await self.db.delete(choice)
        error = await safe_commit(self.db, "delete choice")
        if error:
            return ActionResult.fail(error, code=EXTERNAL)
        return ActionResult.ok(choice_id=choice_id, quiz_id=quiz_id)
