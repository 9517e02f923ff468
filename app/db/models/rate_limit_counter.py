from sqlalchemy import Column, Integer, String, DateTime
from app.db.base import Base


class RateLimitCounter(Base):
    """
    Fixed-window request counter shared by every service instance.

    A row is live until ``expires_at``; an expired row is reset in place by
    the next request for the same key.
    """
    __tablename__ = "rate_limit_counters"

    key = Column(String, primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    window_start = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
