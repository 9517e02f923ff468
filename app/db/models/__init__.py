"""
Database models module.

Imports every ledger model so they are registered with Base.metadata before
table creation and Alembic autogeneration.
"""
from app.db.models.account import Account
from app.db.models.job import JobPosting, JobApplication
from app.db.models.plan import SubscriptionPlan, CreditPackage, CreditPackageItem
from app.db.models.subscription import Subscription
from app.db.models.credit_balance import CreditBalance
from app.db.models.consumption_record import ConsumptionRecord
from app.db.models.payment_settlement import PaymentSettlement
from app.db.models.rate_limit_counter import RateLimitCounter

__all__ = [
    "Account",
    "JobPosting",
    "JobApplication",
    "SubscriptionPlan",
    "CreditPackage",
    "CreditPackageItem",
    "Subscription",
    "CreditBalance",
    "ConsumptionRecord",
    "PaymentSettlement",
    "RateLimitCounter",
]
