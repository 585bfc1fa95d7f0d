from sqlalchemy import Column, Integer, String, Text, JSON, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin, new_id

STATUS_DRAFT = "DRAFT"
STATUS_PUBLISHED = "PUBLISHED"

QUESTION_TYPE_MULTIPLE_CHOICE = "MULTIPLE_CHOICE"


class QuizPost(Base, TimestampMixin):
    __tablename__ = "quiz_posts"

    id = Column(String(32), primary_key=True, default=lambda: new_id("c"))
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default=STATUS_DRAFT, nullable=False, index=True)
    slug = Column(String(64), unique=True, index=True, nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)

    # Display metadata, opaque to the quiz engine
    theme = Column(JSON, nullable=True)
    icon = Column(String(64), nullable=True)
    gradient = Column(String(128), nullable=True)

    author_id = Column(String(64), nullable=True)
    author_email = Column(String(255), nullable=True)
    published_at = Column(DateTime, nullable=True)

    questions = relationship(
        "Question",
        back_populates="quiz_post",
        cascade="all, delete-orphan",
        order_by="Question.order",
    )


class Question(Base, TimestampMixin):
    __tablename__ = "questions"

    id = Column(String(32), primary_key=True, default=lambda: new_id("q"))
    quiz_post_id = Column(String(32), ForeignKey("quiz_posts.id", ondelete="CASCADE"), index=True, nullable=False)
    text = Column(Text, nullable=False, default="")
    order = Column(Integer, nullable=False, default=0)
    points = Column(Integer, nullable=False, default=1)
    type = Column(String(32), nullable=False, default=QUESTION_TYPE_MULTIPLE_CHOICE)

    quiz_post = relationship("QuizPost", back_populates="questions")
    choices = relationship(
        "Choice",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="Choice.order",
    )


class Choice(Base, TimestampMixin):
    __tablename__ = "choices"

    id = Column(String(32), primary_key=True, default=lambda: new_id("ch"))
    question_id = Column(String(32), ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
    text = Column(Text, nullable=False, default="")
    order = Column(Integer, nullable=False, default=0)
    is_correct = Column(Boolean, nullable=False, default=False)

    question = relationship("Question", back_populates="choices")
