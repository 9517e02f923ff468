"""
Plan catalog: subscription tiers and purchasable credit packages.

Default rows are seeded on first access. The unique ``plan_type``/``code``
constraints double as the seeding guard, so concurrent first requests cannot
create duplicates; a losing insert is rolled back and the winner's row is used.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import InvalidRequest, NotFound
from app.db.models.plan import SubscriptionPlan, CreditPackage, CreditPackageItem

logger = logging.getLogger(__name__)

CREDIT_TYPES: List[str] = ["resume_contact", "ai_credit", "job_posting"]

# Action kind -> credit type it consumes
ACTION_CREDIT_TYPES: Dict[str, str] = {
    "reveal_contact": "resume_contact",
    "ai_analysis": "ai_credit",
    "job_post": "job_posting",
}

FREE_PLAN_TYPE = "free"

DEFAULT_SUBSCRIPTION_PLANS: List[Dict] = [
    {
        "plan_type": "free",
        "name": "Free",
        "description": "Basic job posting with limited features",
        "price_monthly": Decimal("0"),
        "price_yearly": Decimal("0"),
        "trial_days": 0,
        "max_resume_contacts": 5,
        "max_ai_credits": 0,
        "max_job_postings": 1,
        "features": {
            "job_search": True,
            "basic_filters": True,
            "job_posting_access": True,
            "resume_search_access": True,
        },
    },
    {
        "plan_type": "basic",
        "name": "Basic",
        "description": "Enhanced job posting with more features",
        "price_monthly": Decimal("299"),
        "price_yearly": Decimal("2990"),
        "trial_days": 7,
        "max_resume_contacts": 50,
        "max_ai_credits": 10,
        "max_job_postings": 5,
        "features": {
            "job_search": True,
            "advanced_filters": True,
            "job_posting_access": True,
            "resume_search_access": True,
            "basic_analytics": True,
        },
    },
    {
        "plan_type": "premium",
        "name": "Premium",
        "description": "Full-featured plan with AI capabilities",
        "price_monthly": Decimal("599"),
        "price_yearly": Decimal("5990"),
        "trial_days": 14,
        "max_resume_contacts": 200,
        "max_ai_credits": 50,
        "max_job_postings": 25,
        "features": {
            "job_search": True,
            "advanced_filters": True,
            "job_posting_access": True,
            "resume_search_access": True,
            "ai_job_matching": True,
            "priority_support": True,
            "advanced_analytics": True,
        },
    },
    {
        "plan_type": "enterprise",
        "name": "Enterprise",
        "description": "Unlimited access for large organizations",
        "price_monthly": Decimal("999"),
        "price_yearly": Decimal("9990"),
        "trial_days": 30,
        "max_resume_contacts": None,  # Unlimited
        "max_ai_credits": None,
        "max_job_postings": None,
        "features": {
            "job_search": True,
            "advanced_filters": True,
            "job_posting_access": True,
            "resume_search_access": True,
            "ai_job_matching": True,
            "priority_support": True,
            "advanced_analytics": True,
            "custom_branding": True,
            "team_management": True,
        },
    },
]

DEFAULT_CREDIT_PACKAGES: List[Dict] = [
    {"code": "resume-contact-starter", "name": "Resume Contact Starter", "description": "View 25 resume contacts",
     "credit_type": "resume_contact", "credit_amount": 25, "bonus_credits": 5, "price": Decimal("199"), "validity_days": 90},
    {"code": "resume-contact-pro", "name": "Resume Contact Pro", "description": "View 100 resume contacts",
     "credit_type": "resume_contact", "credit_amount": 100, "bonus_credits": 25, "price": Decimal("599"), "validity_days": 180},
    {"code": "resume-contact-enterprise", "name": "Resume Contact Enterprise", "description": "View 500 resume contacts",
     "credit_type": "resume_contact", "credit_amount": 500, "bonus_credits": 100, "price": Decimal("2499"), "validity_days": 365},
    {"code": "ai-credit-starter", "name": "AI Credit Starter", "description": "20 AI analysis credits",
     "credit_type": "ai_credit", "credit_amount": 20, "bonus_credits": 5, "price": Decimal("149"), "validity_days": 90},
    {"code": "ai-credit-pro", "name": "AI Credit Pro", "description": "100 AI analysis credits",
     "credit_type": "ai_credit", "credit_amount": 100, "bonus_credits": 25, "price": Decimal("599"), "validity_days": 180},
    {"code": "ai-credit-enterprise", "name": "AI Credit Enterprise", "description": "500 AI analysis credits",
     "credit_type": "ai_credit", "credit_amount": 500, "bonus_credits": 100, "price": Decimal("1999"), "validity_days": 365},
    {"code": "recruiter-bundle", "name": "Recruiter Bundle", "description": "Resume contacts + AI credits bundle",
     "credit_type": "bundle", "credit_amount": 0, "bonus_credits": 0, "price": Decimal("399"), "validity_days": 120,
     "items": {"resume_contact": 50, "ai_credit": 20}},
    {"code": "professional-bundle", "name": "Professional Bundle", "description": "Enhanced bundle for active hiring teams",
     "credit_type": "bundle", "credit_amount": 0, "bonus_credits": 0, "price": Decimal("899"), "validity_days": 180,
     "items": {"resume_contact": 150, "ai_credit": 75}},
    {"code": "ultimate-bundle", "name": "Ultimate Bundle", "description": "Complete package for high-volume hiring",
     "credit_type": "bundle", "credit_amount": 0, "bonus_credits": 0, "price": Decimal("1899"), "validity_days": 365,
     "items": {"resume_contact": 400, "ai_credit": 200, "job_posting": 10}},
]


def validate_credit_type(credit_type: str) -> str:
    if credit_type not in CREDIT_TYPES:
        raise InvalidRequest(f"Unknown credit type: {credit_type}")
    return credit_type


def credit_type_for_action(action_kind: str) -> str:
    try:
        return ACTION_CREDIT_TYPES[action_kind]
    except KeyError:
        raise InvalidRequest(f"Unknown action kind: {action_kind}") from None


def _insert_if_absent(db: Session, instance, label: str) -> bool:
    """Insert one catalog row; a unique-constraint loss means someone else seeded it."""
    db.add(instance)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug(f"Catalog row already present, skipping: {label}")
        return False
    return True


def seed_default_plans(db: Session) -> int:
    existing = {plan_type for (plan_type,) in db.query(SubscriptionPlan.plan_type).all()}
    created = 0
    for plan_data in DEFAULT_SUBSCRIPTION_PLANS:
        if plan_data["plan_type"] in existing:
            continue
        plan = SubscriptionPlan(**plan_data, extra_metadata={})
        if _insert_if_absent(db, plan, plan_data["plan_type"]):
            created += 1
    return created


def seed_default_packages(db: Session) -> int:
    existing = {code for (code,) in db.query(CreditPackage.code).all()}
    created = 0
    for package_data in DEFAULT_CREDIT_PACKAGES:
        if package_data["code"] in existing:
            continue
        data = dict(package_data)
        items = data.pop("items", {})
        package = CreditPackage(**data, extra_metadata={})
        package.items = [
            CreditPackageItem(credit_type=credit_type, amount=amount)
            for credit_type, amount in items.items()
        ]
        if _insert_if_absent(db, package, data["code"]):
            created += 1
    return created


def ensure_catalog(db: Session) -> None:
    """Seed the default catalog when it is empty. Cheap no-op afterwards."""
    has_plans = db.query(SubscriptionPlan.id).first() is not None
    has_packages = db.query(CreditPackage.id).first() is not None
    if has_plans and has_packages:
        return

    plans = 0 if has_plans else seed_default_plans(db)
    packages = 0 if has_packages else seed_default_packages(db)
    if plans or packages:
        logger.info(f"Catalog seeded: plans={plans}, packages={packages}")


def list_plans(db: Session, include_inactive: bool = False) -> List[SubscriptionPlan]:
    ensure_catalog(db)
    query = db.query(SubscriptionPlan)
    if not include_inactive:
        query = query.filter(SubscriptionPlan.is_active.is_(True))
    return query.order_by(SubscriptionPlan.price_monthly, SubscriptionPlan.id).all()


def list_packages(db: Session, credit_type: Optional[str] = None) -> List[CreditPackage]:
    ensure_catalog(db)
    query = db.query(CreditPackage).filter(CreditPackage.is_active.is_(True))
    if credit_type:
        query = query.filter(CreditPackage.credit_type == credit_type)
    return query.order_by(CreditPackage.credit_type, CreditPackage.price).all()


def get_plan(db: Session, plan_id: int) -> SubscriptionPlan:
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan:
        raise NotFound("subscription_plan", plan_id)
    return plan


def get_plan_by_type(db: Session, plan_type: str) -> SubscriptionPlan:
    ensure_catalog(db)
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.plan_type == plan_type).first()
    if not plan:
        raise NotFound("subscription_plan", plan_type)
    return plan


def get_package(db: Session, package_id: int) -> CreditPackage:
    package = db.query(CreditPackage).filter(CreditPackage.id == package_id).first()
    if not package:
        raise NotFound("credit_package", package_id)
    return package


def upgrade_options(db: Session, credit_type: str, current_allowance) -> List[str]:
    """Plan types whose ceiling for ``credit_type`` beats the current allowance."""
    options = []
    for plan in list_plans(db):
        ceiling = plan.allowance_for(credit_type)
        if ceiling is None or (current_allowance is not None and ceiling > current_allowance):
            options.append(plan.plan_type)
    return options
