import os

# --- Store / cache ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./rodeo_gate.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
STORE_RETRY_ATTEMPTS = int(os.environ.get("STORE_RETRY_ATTEMPTS", "3"))

# --- Trust ---
AUTH_JWT_SECRET = os.environ.get("AUTH_JWT_SECRET", "dev_secret_change_me")
ISSUE_TOKEN = os.environ.get("ISSUE_TOKEN", "")

# --- Stripe ---
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
SITE_URL = os.environ.get("SITE_URL", "http://localhost:3000")

PRICE_CATALOG = {
    "general_admission": {
        "price_id": os.environ.get("STRIPE_GENERAL_ADMISSION_PRICE_ID", "price_general_admission"),
        "event_ref": "rodeo-2026-main",
    },
}
MAX_TICKETS_PER_CHECKOUT = int(os.environ.get("MAX_TICKETS_PER_CHECKOUT", "10"))

# --- Gate ---
RATE_LIMIT_PER_MINUTE = int(os.environ.get("RATE_LIMIT_PER_MINUTE", "60"))
# peers allowed to set X-Forwarded-For for rate limiting (comma separated)
TRUSTED_PROXIES = {h.strip() for h in os.environ.get("TRUSTED_PROXIES", "").split(",") if h.strip()}
IDEMPOTENCY_TTL_SECONDS = int(os.environ.get("IDEMPOTENCY_TTL_SECONDS", "300"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def event_ref_for_price(price_id: str) -> str | None:
    for entry in PRICE_CATALOG.values():
        if entry["price_id"] == price_id:
            return entry["event_ref"]
    return None
