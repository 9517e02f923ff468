"""
Create all ledger tables directly (local development only).

Deployed environments use Alembic through app.db.migrate.
"""
import logging

from app.db.session import engine
from app.db.base import Base
import app.db.models  # noqa: F401  registers every model on Base.metadata

logger = logging.getLogger(__name__)


def init_db():
    Base.metadata.create_all(bind=engine)
    logger.info("Ledger tables created")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
