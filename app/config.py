import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")

# Scheduling - a single fixed service timezone, no cross-region scheduling
SERVICE_TIMEZONE = os.getenv("SERVICE_TIMEZONE", "America/Santiago")
# Minutes a pending_payment appointment keeps its slot before the sweep releases it
HOLD_TIMEOUT_MINUTES = int(os.getenv("HOLD_TIMEOUT_MINUTES", "15"))
# How far ahead users may book
BOOKING_HORIZON_DAYS = int(os.getenv("BOOKING_HORIZON_DAYS", "30"))

# External calendar (advisory only, never blocks slot listing)
EXTERNAL_CALENDAR_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_CALENDAR_TIMEOUT_SECONDS", "5"))

# Meeting link creation retries (arq job, exponential backoff)
MEETING_LINK_MAX_TRIES = int(os.getenv("MEETING_LINK_MAX_TRIES", "5"))
MEETING_LINK_RETRY_BASE_SECONDS = int(os.getenv("MEETING_LINK_RETRY_BASE_SECONDS", "10"))

# Frontend base URL for payment redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
# Public base URL of this API, used for provider webhooks
PUBLIC_API_URL = os.getenv("PUBLIC_API_URL", "http://localhost:8000")

# Google Calendar OAuth Configuration
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
# Calendar token encryption key (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
CALENDAR_ENCRYPTION_KEY = os.getenv("CALENDAR_ENCRYPTION_KEY")

# MercadoPago Configuration
MERCADOPAGO_ACCESS_TOKEN = os.getenv("MERCADOPAGO_ACCESS_TOKEN")
MERCADOPAGO_WEBHOOK_SECRET = os.getenv("MERCADOPAGO_WEBHOOK_SECRET")  # From "Your integrations" panel
MERCADOPAGO_API_BASE = os.getenv("MERCADOPAGO_API_BASE", "https://api.mercadopago.com")

# PayPal Configuration
PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET")
# https://api-m.sandbox.paypal.com for sandbox
PAYPAL_API_BASE = os.getenv("PAYPAL_API_BASE", "https://api-m.paypal.com")
# PayPal does not settle CLP, prices are converted at a fixed rate
PAYPAL_CLP_PER_USD = float(os.getenv("PAYPAL_CLP_PER_USD", "900"))

# Admin API key - CRITICAL: admin routes are disabled when unset
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")
if not ADMIN_API_KEY:
    import warnings

    warnings.warn(
        "ADMIN_API_KEY not set! Admin endpoints will reject every request", RuntimeWarning, stacklevel=2
    )

# CORS
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]
