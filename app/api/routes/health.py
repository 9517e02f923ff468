"""
Liveness and readiness probe.
"""
import logging
from fastapi import APIRouter
from sqlalchemy import text
from app.core.clock import utcnow
from app.db.models.plan import SubscriptionPlan
from app.db.session import SessionLocal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_check():
    """
    Always 200; ``status`` is ``degraded`` when the ledger store is unreachable.

    ``catalog_seeded`` is False until the first catalog access or
    ``scripts/seed_catalog.py`` has run.
    """
    checks = {"database": "connected", "catalog_seeded": False}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["catalog_seeded"] = db.query(SubscriptionPlan.id).first() is not None
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        checks["database"] = f"error: {e}"
    finally:
        db.close()

    return {
        "status": "healthy" if checks["database"] == "connected" else "degraded",
        "timestamp": utcnow().isoformat(),
        "version": "1.0.0",
        **checks,
    }
