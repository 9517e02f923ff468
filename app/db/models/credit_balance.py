from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
)
from app.core.clock import utcnow
from app.db.base import Base


class CreditBalance(Base):
    """
    Per (account, credit type) ledger row.

    ``allocated``/``used`` track subscription quota for the period recorded in
    ``period_start``; ``allocated`` is NULL when the plan is unlimited.
    ``purchased`` is credit bought through packages and survives period
    rollover. The CHECK constraints keep ``used <= allocated`` and
    ``purchased >= 0`` enforced by the store itself.
    """
    __tablename__ = "credit_balances"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    credit_type = Column(String, nullable=False)

    # Subscription quota for the current period
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)
    allocated = Column(Integer, nullable=True, default=0)
    used = Column(Integer, nullable=False, default=0)

    # Purchased credits
    purchased = Column(Integer, nullable=False, default=0)
    total_purchased = Column(Integer, nullable=False, default=0)
    purchased_used = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", "credit_type", name="uq_balance_account_type"),
        CheckConstraint("purchased >= 0", name="ck_balance_purchased_non_negative"),
        CheckConstraint("used >= 0", name="ck_balance_used_non_negative"),
        CheckConstraint("allocated IS NULL OR used <= allocated", name="ck_balance_used_within_allocated"),
    )

    @property
    def subscription_remaining(self):
        """Remaining quota, or None when the plan is unlimited."""
        if self.allocated is None:
            return None
        return max(0, self.allocated - self.used)

    def purchased_available(self, now=None) -> int:
        now = now or utcnow()
        if self.expires_at is not None and self.expires_at <= now:
            return 0
        return self.purchased
