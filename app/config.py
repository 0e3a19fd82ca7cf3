import os
from dotenv import load_dotenv

load_dotenv(dotenv_path=".env")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "change-this-secret-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# CORS
CORS_ORIGIN = os.getenv("CORS_ORIGIN", "*")

# Cafe wall-clock (India Standard Time by default)
CAFE_TIMEZONE_OFFSET_MINUTES = int(os.getenv("CAFE_TIMEZONE_OFFSET_MINUTES", "330"))
CAFE_TIMEZONE_NAME = os.getenv("CAFE_TIMEZONE_NAME", "Asia/Kolkata")

# Subscriptions (per-shop overrides live in the subscription_config table)
FREE_TRIAL_PLAN_CODE = os.getenv("FREE_TRIAL_PLAN_CODE", "FREE_TRIAL")
GRACE_PERIOD_DAYS = int(os.getenv("GRACE_PERIOD_DAYS", "3"))
STATUS_CHECK_INTERVAL_MINUTES = int(os.getenv("STATUS_CHECK_INTERVAL_MINUTES", "60"))

# Client timer engine
TIMER_TICK_SECONDS = float(os.getenv("TIMER_TICK_SECONDS", "1"))
TIMER_RESYNC_SECONDS = float(os.getenv("TIMER_RESYNC_SECONDS", "30"))
TIMER_FLUSH_EVERY_TICKS = int(os.getenv("TIMER_FLUSH_EVERY_TICKS", "10"))
PAID_RESET_GUARD_SECONDS = float(os.getenv("PAID_RESET_GUARD_SECONDS", "0.3"))
PAID_EVENT_POLL_SECONDS = float(os.getenv("PAID_EVENT_POLL_SECONDS", "3"))
PAID_EVENT_KEYS_KEPT = int(os.getenv("PAID_EVENT_KEYS_KEPT", "256"))
