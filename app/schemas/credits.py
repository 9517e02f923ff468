"""
Pydantic schemas for balance and consumption endpoints.
"""
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, Field


class CreditTypeBalance(BaseModel):
    """Balance details for a single credit type."""
    allocated: Optional[int] = Field(None, description="Period allowance (None for unlimited)")
    used: int = Field(..., description="Allowance used this period")
    subscription_remaining: Optional[int] = Field(None, description="Remaining allowance (None for unlimited)")
    unlimited: bool = Field(..., description="Whether the plan allowance is unlimited")
    purchased: int = Field(..., description="Purchased credits available")
    total_purchased: int = Field(..., description="Purchased credits ever added")
    expires_at: Optional[datetime] = Field(None, description="When purchased credits expire")


class BalanceResponse(BaseModel):
    """Response schema for GET /credits/balance."""
    account_id: int
    plan: str = Field(..., description="Current plan type (free, basic, premium, enterprise)")
    subscription_status: str
    period_start: datetime
    period_end: datetime
    subscription_remaining: Dict[str, Optional[int]] = Field(..., description="Remaining allowance by credit type")
    purchased: Dict[str, int] = Field(..., description="Purchased balance by credit type")
    credits: Dict[str, CreditTypeBalance]

    class Config:
        json_schema_extra = {
            "example": {
                "account_id": 12,
                "plan": "basic",
                "subscription_status": "active",
                "period_start": "2026-10-01T00:00:00",
                "period_end": "2026-10-31T00:00:00",
                "subscription_remaining": {"resume_contact": 47, "ai_credit": 10, "job_posting": 5},
                "purchased": {"resume_contact": 30, "ai_credit": 0, "job_posting": 0},
                "credits": {},
            }
        }


class ConsumeRequest(BaseModel):
    """Request schema for POST /credits/consume."""
    credit_type: str = Field(..., pattern="^(resume_contact|ai_credit|job_posting)$")
    amount: int = Field(1, ge=1, le=1000)


class ConsumeResponse(BaseModel):
    """Response schema for a successful consumption."""
    credit_type: str
    amount: int
    source: str = Field(..., description="subscription, credit or mixed")
    from_subscription: int
    from_credit: int
    subscription_remaining: Optional[int] = Field(None, description="None for unlimited")
    purchased_remaining: int
    new_remaining: Optional[int] = Field(None, description="Total remaining (None for unlimited)")
