import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://localhost/healthpal")

# JWT access tokens are issued by the auth service; we only verify them
JWT_ACCESS_SECRET = os.getenv("JWT_ACCESS_SECRET")
if not JWT_ACCESS_SECRET:
    warnings.warn(
        "JWT_ACCESS_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    JWT_ACCESS_SECRET = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Frontend base URL for payment result redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# VNPay Configuration
VNPAY_TMN_CODE = os.getenv("VNPAY_TMN_CODE", "")
VNPAY_HASH_SECRET = os.getenv("VNPAY_HASH_SECRET")
if not VNPAY_HASH_SECRET:
    warnings.warn(
        "VNPAY_HASH_SECRET not set! Gateway callbacks cannot be trusted in production",
        RuntimeWarning,
        stacklevel=2,
    )
    VNPAY_HASH_SECRET = "INSECURE-DEV-VNPAY-SECRET"  # noqa: S105 - Dev fallback only
VNPAY_URL = os.getenv("VNPAY_URL", "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html")
VNPAY_RETURN_URL = os.getenv("VNPAY_RETURN_URL", "http://localhost:8000/payments/vnpay/callback")
VNPAY_IPN_URL = os.getenv("VNPAY_IPN_URL", "http://localhost:8000/payments/vnpay/ipn")
VNPAY_PAYMENT_EXPIRE_MINUTES = int(os.getenv("VNPAY_PAYMENT_EXPIRE_MINUTES", "15"))

# Booking
SLOT_DURATION_MINUTES = int(os.getenv("SLOT_DURATION_MINUTES", "30"))
# Appointment dates and times are clinic-local (Vietnam, GMT+7)
CLINIC_UTC_OFFSET_HOURS = int(os.getenv("CLINIC_UTC_OFFSET_HOURS", "7"))

# Rate limit for payment URL generation (per client IP)
PAYMENT_RATE_LIMIT = int(os.getenv("PAYMENT_RATE_LIMIT", "10"))
PAYMENT_RATE_WINDOW = int(os.getenv("PAYMENT_RATE_WINDOW", "60"))

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:8081,http://localhost:19006",
).split(",")

# Redis (rate limiting only); REDIS_URL takes precedence over host/port
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"
