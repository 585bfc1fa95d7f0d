from sqlalchemy import Column, String
from models.base import Base, TimestampMixin, new_id


class User(Base, TimestampMixin):
    """Local cache of email -> central account id."""
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=lambda: new_id("u"))
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    account_id = Column(String(64), index=True, nullable=True)
