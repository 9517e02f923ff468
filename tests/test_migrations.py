"""
Alembic baseline applied through the migration runner.
"""
from sqlalchemy import create_engine, inspect

from app.db.base import Base
import app.db.models  # noqa: F401
from app.db.migrate import run_migrations


def test_migrations_create_ledger_schema(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"

    run_migrations(url)
    # Re-running at head is a no-op
    run_migrations(url)

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert set(Base.metadata.tables) <= tables
        assert "alembic_version" in tables

        subscription_indexes = {index["name"]: index for index in inspector.get_indexes("subscriptions")}
        assert subscription_indexes["uq_subscription_live_account"]["unique"]

        balance_checks = {check["name"] for check in inspector.get_check_constraints("credit_balances")}
        assert "ck_balance_used_within_allocated" in balance_checks
    finally:
        engine.dispose()
