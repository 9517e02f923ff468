from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Index
from app.core.clock import utcnow
from app.db.base import Base


class ConsumptionRecord(Base):
    """
    Immutable audit row for a paid action ("reveal").

    The unique constraint on (owner, target, action) is the sole arbiter of
    "already charged": whichever delegated seat triggers the action, the
    credit-owning account pays at most once per target.
    """
    __tablename__ = "consumption_records"

    id = Column(Integer, primary_key=True, index=True)
    actor_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    owner_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)

    action_kind = Column(String, nullable=False)  # reveal_contact | ai_analysis | job_post
    target_ref = Column(String, nullable=False)  # e.g. "application:42" or "profile:7"
    scope = Column(String, nullable=False, default="database")  # application | database

    credit_type = Column(String, nullable=False)
    source = Column(String, nullable=False)  # subscription | credit | mixed
    amount = Column(Integer, nullable=False, default=1)
    subscription_amount = Column(Integer, nullable=False, default=0)
    credit_amount = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("owner_account_id", "target_ref", "action_kind", name="uq_consumption_owner_target_action"),
        Index("idx_consumption_owner_scope_created", "owner_account_id", "scope", "created_at"),
    )
