"""
Alembic migration runner for the ledger schema.
"""
import logging
import os
from alembic.config import Config
from alembic import command
from sqlalchemy import create_engine, text

from app.core import config as app_config

logger = logging.getLogger(__name__)

ADVISORY_LOCK_ID = 574210983
ALEMBIC_INI_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), "alembic.ini"
)


def alembic_config(database_url: str) -> Config:
    alembic_cfg = Config(ALEMBIC_INI_PATH)
    alembic_cfg.set_main_option(
        "script_location", os.path.join(os.path.dirname(ALEMBIC_INI_PATH), "alembic")
    )
    alembic_cfg.attributes["database_url"] = database_url
    return alembic_cfg


def run_migrations(database_url: str = None):
    """
    Upgrade the ledger schema to the head revision.

    On PostgreSQL an advisory lock serializes concurrent service instances
    starting at the same time.
    """
    database_url = database_url or app_config.DATABASE_URL
    if not database_url:
        raise ValueError("DATABASE_URL is not set")

    logger.info("Running alembic upgrade head")
    alembic_cfg = alembic_config(database_url)

    if not database_url.startswith("postgresql"):
        command.upgrade(alembic_cfg, "head")
        logger.info("Migrations complete")
        return

    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        # Keep the connection open for as long as the lock is held
        with engine.connect() as lock_conn:
            lock_conn.execute(text(f"SELECT pg_advisory_lock({ADVISORY_LOCK_ID})"))
            lock_conn.commit()
            logger.info("Migration lock acquired")
            try:
                command.upgrade(alembic_cfg, "head")
                logger.info("Migrations complete")
            except Exception:
                logger.exception("Migration failed")
                raise
            finally:
                lock_conn.execute(text(f"SELECT pg_advisory_unlock({ADVISORY_LOCK_ID})"))
                lock_conn.commit()
    finally:
        engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_migrations()
