"""
Logging configuration for the entitlement ledger.

Console output for operators, plus a rotating file that keeps the ledger's
mutation trail (consumptions, reveals, settlements) with call sites.
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "stripe", "sqlalchemy.engine", "alembic")

SENSITIVE_KEYS = (
    "password", "token", "secret", "key", "api_key",
    "stripe_secret_key", "stripe_webhook_secret",
    "database_url", "client_secret", "email", "phone",
)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs"):
    """
    Configure root logging once at startup.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
        log_dir: Directory for ``ledger.log`` (rotated at 10MB, 5 backups)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    log_path = Path(log_dir)
    log_path.mkdir(exist_ok=True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    file_handler = RotatingFileHandler(log_path / "ledger.log", maxBytes=10 * 1024 * 1024, backupCount=5)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in (console_handler, file_handler):
        handler.setLevel(level)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def sanitize_log_data(data: dict) -> dict:
    """
    Return a copy of ``data`` safe to log.

    Values under keys that look like secrets or contact details are replaced;
    nested dictionaries are sanitized too. The input is not modified.
    """
    sanitized = {}
    for key, value in data.items():
        if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = "***REDACTED***"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        else:
            sanitized[key] = value
    return sanitized
