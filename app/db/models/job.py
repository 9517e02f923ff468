"""
Minimal job-board references used for reveal ownership checks.

Job CRUD lives elsewhere; the ledger only needs to know which account posted
the job an application belongs to.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.db.base import Base


class JobPosting(Base):
    __tablename__ = "job_postings"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    applications = relationship("JobApplication", back_populates="job")


class JobApplication(Base):
    __tablename__ = "job_applications"

    id = Column(Integer, primary_key=True, index=True)
    job_posting_id = Column(Integer, ForeignKey("job_postings.id"), nullable=False, index=True)
    applicant_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    status = Column(String, default="applied")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    job = relationship("JobPosting", back_populates="applications")
