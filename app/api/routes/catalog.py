from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.catalog import PackageOut, PlanOut
from app.services.plan_catalog import list_packages, list_plans

router = APIRouter(prefix="/catalog", tags=["Catalog"])


@router.get("/plans", response_model=List[PlanOut])
def get_plans(db: Session = Depends(get_db)):
    return list_plans(db)


@router.get("/packages", response_model=List[PackageOut])
def get_packages(credit_type: Optional[str] = None, db: Session = Depends(get_db)):
    return list_packages(db, credit_type=credit_type)
