"""
Store-backed fixed-window rate limiter.

Counters live in the ``rate_limit_counters`` table so every service instance
shares them. Each hit is a conditional update against the live window; an
expired window is reset in place, and the first hit for a key inserts the row
under its primary-key constraint.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import config
from app.core.auth_dependency import get_current_account_id
from app.core.clock import utcnow
from app.db.models.rate_limit_counter import RateLimitCounter
from app.db.session import get_db

logger = logging.getLogger(__name__)


def hit(
    db: Session,
    key: str,
    max_requests: int,
    window_seconds: int,
    now: Optional[datetime] = None,
) -> bool:
    """Record one request for ``key``. Returns False when the window is already full."""
    now = now or utcnow()
    window = timedelta(seconds=window_seconds)

    for _ in range(2):
        rows = (
            db.query(RateLimitCounter)
            .filter(
                RateLimitCounter.key == key,
                RateLimitCounter.expires_at > now,
                RateLimitCounter.count < max_requests,
            )
            .update({RateLimitCounter.count: RateLimitCounter.count + 1}, synchronize_session=False)
        )
        if rows:
            db.commit()
            return True

        live = (
            db.query(RateLimitCounter.key)
            .filter(RateLimitCounter.key == key, RateLimitCounter.expires_at > now)
            .first()
        )
        if live is not None:
            db.commit()
            return False

        rows = (
            db.query(RateLimitCounter)
            .filter(RateLimitCounter.key == key, RateLimitCounter.expires_at <= now)
            .update(
                {
                    RateLimitCounter.count: 1,
                    RateLimitCounter.window_start: now,
                    RateLimitCounter.expires_at: now + window,
                },
                synchronize_session=False,
            )
        )
        if rows:
            db.commit()
            return True

        db.add(RateLimitCounter(key=key, count=1, window_start=now, expires_at=now + window))
        try:
            db.commit()
            return True
        except IntegrityError:
            # Another instance opened the window first; count against it
            db.rollback()

    return False


def check_rate_limit(db: Session, key: str, max_requests: int, window_seconds: int) -> None:
    """
    Raise 429 when ``key`` has exceeded ``max_requests`` in the current window.
    """
    if hit(db, key, max_requests, window_seconds):
        return

    logger.warning(f"Rate limit exceeded: key={key} ({max_requests} requests per {window_seconds}s)")
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Rate limit exceeded. Maximum {max_requests} requests per {window_seconds} seconds.",
    )


def purge_expired(db: Session, now: Optional[datetime] = None) -> int:
    """Delete counters whose window has closed."""
    now = now or utcnow()
    deleted = (
        db.query(RateLimitCounter)
        .filter(RateLimitCounter.expires_at <= now)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info(f"Purged {deleted} expired rate limit counters")
    return deleted


def rate_limit(scope: str, max_requests: Optional[int] = None, window_seconds: Optional[int] = None):
    """
    Dependency limiting the calling account on ``scope``.
    """
    def limiter(
        account_id: int = Depends(get_current_account_id),
        db: Session = Depends(get_db),
    ) -> int:
        check_rate_limit(
            db,
            f"{scope}:{account_id}",
            max_requests or config.REVEAL_RATE_LIMIT,
            window_seconds or config.REVEAL_RATE_WINDOW_SECONDS,
        )
        return account_id

    return limiter
