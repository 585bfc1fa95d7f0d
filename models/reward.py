from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, ForeignKey
from models.base import Base, TimestampMixin, new_id

REWARD_PENDING = "PENDING"
REWARD_DELIVERED = "DELIVERED"
REWARD_FAILED = "FAILED"


class RewardEvent(Base, TimestampMixin):
    """Outbox row for a completion reward waiting to reach the central ledger."""
    __tablename__ = "reward_events"

    id = Column(String(32), primary_key=True, default=lambda: new_id("r"))
    attempt_id = Column(String(32), ForeignKey("attempts.id"), unique=True, nullable=False)
    account_id = Column(String(64), index=True, nullable=False)
    quiz_post_id = Column(String(32), ForeignKey("quiz_posts.id"), index=True, nullable=False)

    event_type = Column(String(32), nullable=False)
    coins = Column(Integer, nullable=False, default=0)
    tokens = Column(Integer, nullable=False, default=0)
    xp = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=True)

    status = Column(String(16), nullable=False, default=REWARD_PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
