from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, JSON, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.db.base import Base

# Credit type -> SubscriptionPlan column holding its per-period ceiling
ALLOWANCE_COLUMNS = {
    "resume_contact": "max_resume_contacts",
    "ai_credit": "max_ai_credits",
    "job_posting": "max_job_postings",
}


class SubscriptionPlan(Base):
    """
    Subscription tier definition.

    Immutable once an active subscription references it; a price or ceiling
    change is a new row with a new ``plan_type``. A ``None`` ceiling means
    unlimited.
    """
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    plan_type = Column(String, unique=True, nullable=False, index=True)  # free | basic | premium | enterprise
    name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)

    price_monthly = Column(Numeric(10, 2), nullable=False, default=0)
    price_yearly = Column(Numeric(10, 2), nullable=False, default=0)
    trial_days = Column(Integer, nullable=False, default=0)

    max_resume_contacts = Column(Integer, nullable=True)
    max_ai_credits = Column(Integer, nullable=True)
    max_job_postings = Column(Integer, nullable=True)

    features = Column(JSON, nullable=False, default=dict)  # feature flag -> bool
    extra_metadata = Column(JSON, nullable=False, default=dict)  # str -> str
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def is_free(self) -> bool:
        return not self.price_monthly and not self.price_yearly

    def allowance_for(self, credit_type: str):
        """Per-period ceiling for a credit type (None = unlimited, 0 = not included)."""
        column = ALLOWANCE_COLUMNS.get(credit_type)
        if column is None:
            return 0
        return getattr(self, column)


class CreditPackage(Base):
    """
    Purchasable bundle of credits.

    Single-type packages credit ``credit_amount + bonus_credits`` of
    ``credit_type``. Bundle packages (``credit_type == "bundle"``) credit each
    of their ``items`` instead.
    """
    __tablename__ = "credit_packages"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)

    credit_type = Column(String, nullable=False, index=True)
    credit_amount = Column(Integer, nullable=False, default=0)
    bonus_credits = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=False)
    validity_days = Column(Integer, nullable=True)  # None = never expires

    extra_metadata = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    items = relationship(
        "CreditPackageItem",
        back_populates="package",
        cascade="all, delete-orphan",
        order_by="CreditPackageItem.credit_type",
    )

    @property
    def is_bundle(self) -> bool:
        return self.credit_type == "bundle"

    def credit_grants(self) -> dict:
        """Credit type -> amount this package adds when settled."""
        if self.is_bundle:
            return {item.credit_type: item.amount for item in self.items}
        return {self.credit_type: self.credit_amount + self.bonus_credits}


class CreditPackageItem(Base):
    """One credit type inside a bundle package."""
    __tablename__ = "credit_package_items"

    id = Column(Integer, primary_key=True)
    package_id = Column(Integer, ForeignKey("credit_packages.id", ondelete="CASCADE"), nullable=False, index=True)
    credit_type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)

    package = relationship("CreditPackage", back_populates="items")

    __table_args__ = (
        UniqueConstraint("package_id", "credit_type", name="uq_package_item_type"),
    )
