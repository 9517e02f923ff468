from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.db.base import Base

SUBSCRIPTION_STATUSES = ("trialing", "active", "canceled", "expired")
LIVE_STATUSES = ("trialing", "active")


class Subscription(Base):
    """
    A credit-owning account's subscription to a plan.

    Rows are never deleted; cancellation and expiry are status transitions.
    Allowance usage is scoped to ``current_period_start``..``current_period_end``.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False)

    status = Column(String, nullable=False, default="active")  # trialing | active | canceled | expired
    billing_cycle = Column(String, nullable=False, default="monthly")  # monthly | yearly
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False)
    canceled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    plan = relationship("SubscriptionPlan")

    __table_args__ = (
        Index("idx_subscription_account_status", "account_id", "status"),
        # At most one live subscription per account, enforced by the store
        Index(
            "uq_subscription_live_account",
            "account_id",
            unique=True,
            postgresql_where=text("status IN ('trialing', 'active')"),
            sqlite_where=text("status IN ('trialing', 'active')"),
        ),
    )
