from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.db.base import Base


class Account(Base):
    """
    Identity that owns balances.

    Delegated seats point at their organization through ``parent_account_id``
    and never own balances themselves.
    """
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="employer")  # employer | sub_user | job_seeker
    parent_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True, index=True)

    # Verification signal supplied by the document-review workflow
    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    parent = relationship("Account", remote_side=[id], backref="delegates")
