import re
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List

from core.config import settings

MIN_CHOICES = 2
DEFAULT_SLUG = "quiz"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _blank(text) -> bool:
    return not text or not text.strip()


def validate_quiz_for_publish(quiz, max_choices: int = None) -> List[ValidationError]:
    """Collect every problem that keeps a quiz from being published."""
    if max_choices is None:
        max_choices = settings.MAX_CHOICES_PER_QUESTION
    errors = []

    if _blank(quiz.title):
        errors.append(ValidationError("title", "Title is required"))

    if not quiz.questions:
        errors.append(ValidationError("questions", "Quiz must have at least one question"))

    for q_index, question in enumerate(quiz.questions):
        field = f"question-{q_index}"
        number = q_index + 1
        choices = list(question.choices)

        if len(choices) < MIN_CHOICES:
            errors.append(ValidationError(field, f"Question {number} must have at least {MIN_CHOICES} choices"))
        if len(choices) > max_choices:
            errors.append(ValidationError(field, f"Question {number} can have at most {max_choices} choices"))

        correct = [c for c in choices if c.is_correct]
        if len(correct) != 1:
            errors.append(ValidationError(field, f"Question {number} must have exactly 1 correct choice"))

        if _blank(question.text):
            errors.append(ValidationError(field, f"Question {number} text is required"))

        for c_index, choice in enumerate(choices):
            if _blank(choice.text):
                errors.append(ValidationError(
                    f"{field}-choice-{c_index}",
                    f"Question {number}, Choice {c_index + 1} text is required",
                ))

    return errors


def slugify(title: str, max_length: int = None) -> str:
    if max_length is None:
        max_length = settings.SLUG_MAX_LENGTH
    slug = _NON_ALNUM.sub("-", (title or "").lower()).strip("-")
    # Truncation can leave a dangling separator
    slug = slug[:max_length].rstrip("-")
    return slug or DEFAULT_SLUG


def next_available_slug(base: str, taken: Iterable[str]) -> str:
    """Return base, or base-2, base-3, ... whichever is free first."""
    taken = set(taken)
    if base not in taken:
        return base
    counter = 2
    while f"{base}-{counter}" in taken:
        counter += 1
    return f"{base}-{counter}"
