import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import billing, billing_webhook, catalog, credits, health, reveals
from app.core.config import CORS_ORIGINS, LOG_LEVEL
from app.core.logging_config import setup_logging

setup_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)


# ============================================
# FASTAPI APP INIT
# ============================================

app = FastAPI(title="Entitlement Ledger")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# REGISTER ALL ROUTERS
# ============================================

app.include_router(credits.router)
app.include_router(reveals.router)
app.include_router(catalog.router)
app.include_router(billing.router)
app.include_router(billing_webhook.router)
app.include_router(health.router)


@app.get("/")
def root():
    return {"status": "Entitlement ledger running"}
