from sqlalchemy import Column, Integer, String, ForeignKey
from models.base import Base, TimestampMixin, new_id


class ScoreEntry(Base, TimestampMixin):
    __tablename__ = "score_entries"

    id = Column(String(32), primary_key=True, default=lambda: new_id("s"))
    quiz_post_id = Column(String(32), ForeignKey("quiz_posts.id"), index=True, nullable=False)
    attempt_id = Column(String(32), ForeignKey("attempts.id"), unique=True, nullable=False)
    device_hash = Column(String(64), index=True, nullable=True)
    account_id = Column(String(64), nullable=True)
    player_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    email_hash = Column(String(64), index=True, nullable=True)
    score = Column(Integer, nullable=False)
    max_score = Column(Integer, nullable=False)
