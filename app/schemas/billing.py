"""
Pydantic schemas for billing endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    """Request schema for starting a purchase."""
    item_type: str = Field(..., pattern="^(subscription|credit_package)$")
    item_id: int = Field(..., description="Plan id or credit package id")
    billing_cycle: str = Field("monthly", pattern="^(monthly|yearly)$")

    class Config:
        json_schema_extra = {
            "example": {"item_type": "credit_package", "item_id": 1, "billing_cycle": "monthly"}
        }


class CheckoutResponse(BaseModel):
    activated: bool = Field(..., description="True when a free plan was activated without payment")
    payment_id: Optional[str] = None
    client_secret: Optional[str] = None
    subscription_id: Optional[int] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: Optional[str] = None


class TrialRequest(BaseModel):
    plan_type: str = Field(..., pattern="^(basic|premium|enterprise)$")


class SubscriptionOut(BaseModel):
    id: int
    plan_id: int
    status: str
    billing_cycle: str
    current_period_start: datetime
    current_period_end: datetime
    canceled_at: Optional[datetime] = None

    class Config:
        from_attributes = True

