from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ActionResponse(BaseModel):
    """Generic success envelope; carries operation specific fields."""
    model_config = ConfigDict(extra="allow")

    success: bool = Field(True, description="Operation status")


class ErrorItem(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    success: bool = Field(False, description="Always false")
    error: str = Field(..., description="Human readable failure message")
    errors: Optional[List[ErrorItem]] = Field(None, description="Every validation problem, when validating")


# === Quizzes (player view) ===

class ChoiceOut(ORMModel):
    """A selectable option. Correctness is never sent to players."""
    id: str
    text: str
    order: int


class QuestionOut(ORMModel):
    id: str
    text: str
    order: int
    points: int
    type: str
    choices: List[ChoiceOut]


class QuizPublic(ORMModel):
    id: str
    title: str
    description: Optional[str] = None
    slug: str
    theme: Optional[Dict[str, Any]] = None
    icon: Optional[str] = None
    gradient: Optional[str] = None
    questions: List[QuestionOut]


class QuizSummary(BaseModel):
    id: str = Field(..., description="Unique quiz ID")
    title: str = Field(..., description="Quiz title")
    description: Optional[str] = None
    slug: Optional[str] = Field(None, description="Public slug, set while published")
    status: str = Field(..., description="DRAFT or PUBLISHED")
    is_active: bool = Field(..., description="Listed on the public homepage")
    icon: Optional[str] = None
    gradient: Optional[str] = None
    questions_count: int = Field(..., description="Number of questions in the quiz")
    created_at: datetime = Field(..., description="Quiz creation timestamp")
    published_at: Optional[datetime] = None


# === Quizzes (admin view) ===

class ChoiceAdminOut(ChoiceOut):
    is_correct: bool


class QuestionAdminOut(QuestionOut):
    choices: List[ChoiceAdminOut]


class QuizAdminDetail(ORMModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str
    slug: Optional[str] = None
    is_active: bool
    theme: Optional[Dict[str, Any]] = None
    icon: Optional[str] = None
    gradient: Optional[str] = None
    author_email: Optional[str] = None
    created_at: datetime
    published_at: Optional[datetime] = None
    questions: List[QuestionAdminOut]


class QuizCreate(BaseModel):
    title: str = Field(..., description="Quiz title", min_length=1, max_length=255, examples=["World Capitals"])


class QuizMetaUpdate(BaseModel):
    """Only the fields present in the request body are changed."""
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    theme: Optional[Dict[str, Any]] = None
    icon: Optional[str] = Field(None, max_length=64)
    gradient: Optional[str] = Field(None, max_length=128)


class ActiveUpdate(BaseModel):
    is_active: bool


class QuestionCreate(BaseModel):
    text: str = Field("", max_length=1000)


class QuestionUpdate(BaseModel):
    text: Optional[str] = Field(None, max_length=1000)
    points: Optional[int] = Field(None, ge=1, description="Points for a correct answer")


class QuestionReorder(BaseModel):
    question_ids: List[str] = Field(..., description="Question ids in their new order")


class ChoiceCreate(BaseModel):
    text: str = Field("", max_length=500)


class ChoiceUpdate(BaseModel):
    text: Optional[str] = Field(None, max_length=500)
    is_correct: Optional[bool] = None


# === Attempts ===

class StartAttemptRequest(BaseModel):
    player_name: str = Field(..., min_length=1, max_length=255, examples=["Ada"])
    device_id: str = Field(..., min_length=1, max_length=128, description="Client generated device identifier")


class AnswerIn(BaseModel):
    question_id: str
    choice_id: Optional[str] = Field(None, description="Selected choice, null when skipped")


class SubmitAttemptRequest(BaseModel):
    answers: List[AnswerIn] = Field(default_factory=list)

    @field_validator("answers")
    @classmethod
    def one_answer_per_question(cls, answers: List[AnswerIn]) -> List[AnswerIn]:
        seen = set()
        for answer in answers:
            if answer.question_id in seen:
                raise ValueError(f"Duplicate answer for question {answer.question_id}")
            seen.add(answer.question_id)
        return answers


class SubmitAttemptResponse(BaseModel):
    success: bool = True
    attempt_id: str
    score: int
    max_score: int
    correct_count: int
    percentage: float
    already_completed_before: bool = Field(..., description="Rewards were already granted for this quiz")


class SaveScoreRequest(BaseModel):
    player_name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)


class AttemptOut(ORMModel):
    id: str
    player_name: str
    score: int
    max_score: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    created_at: datetime


class ResultChoice(BaseModel):
    id: str
    text: str


class ResultQuestion(BaseModel):
    question_id: str
    text: str
    points: int
    selected_choice_id: Optional[str] = None
    correct_choice_id: Optional[str] = None
    is_correct: bool
    choices: List[ResultChoice]


class AttemptResultResponse(BaseModel):
    success: bool = True
    quiz_title: str
    attempt: AttemptOut
    questions: List[ResultQuestion]


class LeaderboardEntry(BaseModel):
    rank: int
    name: str
    score: int
    max_score: int
    created_at: datetime


class LeaderboardResponse(BaseModel):
    success: bool = True
    entries: List[LeaderboardEntry]


# === Analytics ===

class ScoreEntryOut(ORMModel):
    id: str
    player_name: str
    email: Optional[str] = None
    score: int
    max_score: int
    created_at: datetime


class DeviceSummaryOut(ORMModel):
    device_hash: str
    short_hash: str
    attempts: int
    saved_scores: int
    best_score: int
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    emails: Dict[str, int]


class QuizAnalyticsOut(ORMModel):
    total_attempts: int
    saved_scores: int
    completed_attempts: int
    unique_devices: int
    unique_emails: int
    completion_rate: float
    average_score: float
    devices: List[DeviceSummaryOut]


class AnalyticsResponse(BaseModel):
    success: bool = True
    quiz_id: str
    title: str
    analytics: QuizAnalyticsOut
    score_entries: List[ScoreEntryOut]
    recent_attempts: List[AttemptOut]


# === Accounts ===

class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str


class BalanceResponse(BaseModel):
    success: bool = True
    coins: int
    tokens: int
    xp: int
    level: int
