from dataclasses import dataclass
from operator import attrgetter
from typing import Iterable, List, Optional, Sequence


@dataclass(frozen=True)
class SubmittedAnswer:
    question_id: str
    choice_id: Optional[str] = None


@dataclass(frozen=True)
class ScoreResult:
    score: int
    max_score: int
    correct_count: int

    @property
    def percentage(self) -> float:
        if self.max_score <= 0:
            return 0.0
        return self.score * 100 / self.max_score

    @property
    def is_perfect(self) -> bool:
        return self.max_score > 0 and self.score == self.max_score


def sort_by_order(items: Iterable) -> List:
    """Ascending by `order`; sorted() is stable so equal orders keep fetch order."""
    return sorted(items, key=attrgetter("order"))


def question_points(question) -> int:
    return question.points or 1


def first_answers(answers: Iterable[SubmittedAnswer]) -> dict:
    """question_id -> choice_id, keeping the first pair submitted per question."""
    selected = {}
    for answer in answers:
        if answer.question_id not in selected:
            selected[answer.question_id] = answer.choice_id
    return selected


def correct_choice_id(question) -> Optional[str]:
    for choice in question.choices:
        if choice.is_correct:
            return choice.id
    return None


def calculate_score(questions: Sequence, answers: Iterable[SubmittedAnswer]) -> ScoreResult:
    """
    Score a submission against the stored quiz definition.

    Every question adds its points to max_score. A question adds its points to
    score only when the submitted choice is the choice flagged correct; missing
    answers and choices from another question count as unanswered.
    """
    selected = first_answers(answers)
    score = 0
    max_score = 0
    correct_count = 0

    for question in questions:
        points = question_points(question)
        max_score += points

        choice_id = selected.get(question.id)
        if not choice_id:
            continue

        choice = next((c for c in question.choices if c.id == choice_id), None)
        if choice is not None and choice.is_correct:
            score += points
            correct_count += 1

    return ScoreResult(score=score, max_score=max_score, correct_count=correct_count)
