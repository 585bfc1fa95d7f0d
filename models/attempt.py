from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from models.base import Base, TimestampMixin, new_id


class Attempt(Base, TimestampMixin):
    __tablename__ = "attempts"

    id = Column(String(32), primary_key=True, default=lambda: new_id("a"))
    quiz_post_id = Column(String(32), ForeignKey("quiz_posts.id"), index=True, nullable=False)
    account_id = Column(String(64), index=True, nullable=True)
    player_email = Column(String(255), nullable=True)
    device_hash = Column(String(64), index=True, nullable=False)
    player_name = Column(String(255), nullable=False)

    score = Column(Integer, default=0, nullable=False)
    max_score = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime, nullable=False)
    # NULL while the attempt is pending
    finished_at = Column(DateTime, nullable=True)

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None


class Answer(Base, TimestampMixin):
    __tablename__ = "answers"

    id = Column(String(32), primary_key=True, default=lambda: new_id("ans"))
    attempt_id = Column(String(32), ForeignKey("attempts.id"), index=True, nullable=False)
    # Weak references: historical answers outlive edited questions
    question_id = Column(String(32), index=True, nullable=False)
    choice_id = Column(String(32), nullable=True)
