"""
Seed the default subscription plans and credit packages.
Run: python -m scripts.seed_catalog
"""
import sys
import os
import logging

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.services.plan_catalog import seed_default_packages, seed_default_plans

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def seed_catalog():
    db = SessionLocal()
    try:
        plans = seed_default_plans(db)
        packages = seed_default_packages(db)
        logger.info(f"Seeded {plans} plan(s) and {packages} package(s); existing rows left untouched")
    finally:
        db.close()


if __name__ == "__main__":
    seed_catalog()
