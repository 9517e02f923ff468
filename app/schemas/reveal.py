"""
Pydantic schemas for the reveal registry endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class RevealRequest(BaseModel):
    """Request schema for POST /reveals. Exactly one target must be given."""
    application_id: Optional[int] = Field(None, description="Application to one of your job postings")
    profile_id: Optional[int] = Field(None, description="Candidate profile found through database search")
    action_kind: str = Field("reveal_contact", pattern="^(reveal_contact|ai_analysis|job_post)$")
    target_ref: Optional[str] = Field(None, description="Explicit target reference for non-reveal actions")

    @model_validator(mode="after")
    def one_target(self):
        given = [value for value in (self.application_id, self.profile_id, self.target_ref) if value is not None]
        if len(given) != 1:
            raise ValueError("Provide exactly one of application_id, profile_id or target_ref")
        return self

    class Config:
        json_schema_extra = {"example": {"profile_id": 42}}


class ConsumptionRecordOut(BaseModel):
    id: int
    actor_account_id: int
    owner_account_id: int
    action_kind: str
    target_ref: str
    scope: str
    credit_type: str
    source: str
    amount: int
    subscription_amount: int
    credit_amount: int
    created_at: datetime

    class Config:
        from_attributes = True


class RevealResponse(BaseModel):
    """Response schema for POST /reveals."""
    already_paid: bool
    record: ConsumptionRecordOut
    subscription_remaining: Optional[int] = None
    purchased_remaining: Optional[int] = None


class RevealStatusResponse(BaseModel):
    target_ref: str
    has_access: bool
    revealed_at: Optional[datetime] = None
