"""
Pydantic schemas for the plan catalog.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel


class PlanOut(BaseModel):
    id: int
    plan_type: str
    name: str
    description: Optional[str] = None
    price_monthly: Decimal
    price_yearly: Decimal
    trial_days: int
    max_resume_contacts: Optional[int] = None
    max_ai_credits: Optional[int] = None
    max_job_postings: Optional[int] = None
    features: Dict[str, bool] = {}
    extra_metadata: Dict[str, str] = {}

    class Config:
        from_attributes = True


class PackageItemOut(BaseModel):
    credit_type: str
    amount: int

    class Config:
        from_attributes = True


class PackageOut(BaseModel):
    id: int
    code: str
    name: str
    description: Optional[str] = None
    credit_type: str
    credit_amount: int
    bonus_credits: int
    price: Decimal
    validity_days: Optional[int] = None
    items: List[PackageItemOut] = []
    extra_metadata: Dict[str, str] = {}

    class Config:
        from_attributes = True
