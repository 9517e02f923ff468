from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey
from app.core.clock import utcnow
from app.db.base import Base

SETTLEMENT_STATUSES = ("pending", "succeeded", "failed")


class PaymentSettlement(Base):
    """
    One row per external payment identifier.

    ``status`` moves to ``succeeded`` at most once; the transition and the
    balance credit commit together.
    """
    __tablename__ = "payment_settlements"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(String, unique=True, nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)

    item_type = Column(String, nullable=False)  # subscription | credit_package
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=True)
    credit_package_id = Column(Integer, ForeignKey("credit_packages.id"), nullable=True)
    billing_cycle = Column(String, nullable=True)

    amount = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="php")
    status = Column(String, nullable=False, default="pending")
    failure_reason = Column(String, nullable=True)

    # What the settlement activated
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    settled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def item_id(self):
        return self.plan_id if self.item_type == "subscription" else self.credit_package_id
