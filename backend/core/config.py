import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
DEBUG = _get_bool(os.getenv("DEBUG"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:3000"])

# Slot generation. Slot instants are always stored in UTC; SCHEDULE_TIMEZONE is
# the zone the daily start/end times are expressed in.
SLOT_INTERVAL_MINUTES = _get_int(os.getenv("SLOT_INTERVAL_MINUTES"), 30)
SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "UTC")

RESERVATION_TIMEOUT_MINUTES = _get_int(os.getenv("RESERVATION_TIMEOUT_MINUTES"), 30)
REAPER_INTERVAL_MINUTES = _get_int(os.getenv("REAPER_INTERVAL_MINUTES"), 5)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "bdt")
PAYMENT_GATEWAY_TIMEOUT_SECONDS = _get_int(os.getenv("PAYMENT_GATEWAY_TIMEOUT_SECONDS"), 8)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or "redis://localhost:6379/0"

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = _get_int(os.getenv("JWT_EXPIRES_MINUTES"), 60)


def validate_runtime_config() -> None:
    if SLOT_INTERVAL_MINUTES <= 0:
        raise RuntimeError("SLOT_INTERVAL_MINUTES must be positive.")
    if RESERVATION_TIMEOUT_MINUTES <= 0:
        raise RuntimeError("RESERVATION_TIMEOUT_MINUTES must be positive.")
    if APP_ENV.lower() != "production":
        return
    if JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not STRIPE_SECRET_KEY or not STRIPE_WEBHOOK_SECRET:
        raise RuntimeError("STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET must be set in production.")
