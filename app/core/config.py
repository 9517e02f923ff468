import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ledger.db")

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "php")

# ✅ Policy overlay
UNVERIFIED_DATABASE_REVEAL_LIMIT = int(os.getenv("UNVERIFIED_DATABASE_REVEAL_LIMIT", "1"))
UNVERIFIED_REVEAL_WINDOW_DAYS = int(os.getenv("UNVERIFIED_REVEAL_WINDOW_DAYS", "30"))

# ✅ Billing periods
BILLING_PERIOD_DAYS = int(os.getenv("BILLING_PERIOD_DAYS", "30"))
YEARLY_PERIOD_DAYS = int(os.getenv("YEARLY_PERIOD_DAYS", "365"))

# ✅ Consumption gate
CONSUME_MAX_ATTEMPTS = int(os.getenv("CONSUME_MAX_ATTEMPTS", "5"))

# ✅ Rate limiting (store-backed, shared across instances)
REVEAL_RATE_LIMIT = int(os.getenv("REVEAL_RATE_LIMIT", "30"))
REVEAL_RATE_WINDOW_SECONDS = int(os.getenv("REVEAL_RATE_WINDOW_SECONDS", "60"))

# ✅ CORS
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
