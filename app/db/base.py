from sqlalchemy.orm import declarative_base

# Shared metadata for every ledger table; app.db.models registers the models
# and alembic/env.py autogenerates against it.
Base = declarative_base()
