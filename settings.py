import os

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-change-me")
DATA_DIR = os.environ.get("DATA_DIR", os.path.join(BASE_DIR, "data"))
UPLOAD_DIR = os.environ.get("UPLOAD_DIR", os.path.join(BASE_DIR, "static", "uploads"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

CURRENCY = os.environ.get("SHOP_CURRENCY", "SAR")
TAX_RATE = 15
SHIPPING_FEE_CENTS = 2000
FREE_SHIPPING_CENTS = 30000
LOW_STOCK_THRESHOLD = 5

STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY", "")
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
PAYMENT_API_KEY = os.environ.get("PAYMENT_API_KEY", "devkey")
COOKIE_SECURE = _flag("COOKIE_SECURE")

MAIL_PROVIDER = os.environ.get("MAIL_PROVIDER", "smtp")
EMAIL_USER = os.environ.get("EMAIL_USER", "")
EMAIL_APP_PASSWORD = os.environ.get("EMAIL_APP_PASSWORD", "")
EMAIL_SENDER_NAME = os.environ.get("EMAIL_SENDER_NAME", "Mayasah Style")
EMAIL_SENDER_NAME_AR = os.environ.get("EMAIL_SENDER_NAME_AR", "مياسه ستيل")
SMTP_HOST = os.environ.get("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "465"))
BREVO_API_KEY = os.environ.get("BREVO_API_KEY", "")
BREVO_API_URL = os.environ.get("BREVO_API_URL", "https://api.brevo.com/v3/smtp/email")
OWNER_EMAIL = os.environ.get("OWNER_EMAIL", "")
SUPPORT_PHONE = os.environ.get("SUPPORT_PHONE", "0500000000")
SUPPORT_EMAIL = os.environ.get("SUPPORT_EMAIL", "")

EMAIL_RETRY_ENABLED = _flag("EMAIL_RETRY_ENABLED", "1")
EMAIL_RETRY_INTERVAL = int(os.environ.get("EMAIL_RETRY_INTERVAL", "300"))
EMAIL_RETRY_ATTEMPTS = int(os.environ.get("EMAIL_RETRY_ATTEMPTS", "3"))
EMAIL_RETRY_DELAY = float(os.environ.get("EMAIL_RETRY_DELAY", "0.8"))
ASYNC_EMAILS = _flag("ASYNC_EMAILS", "1")

ADMIN_KEY = os.environ.get("ADMIN_KEY", "")
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")
ADMIN_PASSWORD_HASH = os.environ.get("ADMIN_PASSWORD_HASH", "")

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]

try:
    import config  # local-only secrets

    EMAIL_USER = getattr(config, "EMAIL_USER", EMAIL_USER)
    EMAIL_APP_PASSWORD = getattr(config, "EMAIL_APP_PASSWORD", EMAIL_APP_PASSWORD)
    EMAIL_SENDER_NAME = getattr(config, "EMAIL_SENDER_NAME", EMAIL_SENDER_NAME)
    BREVO_API_KEY = getattr(config, "BREVO_API_KEY", BREVO_API_KEY)
    STRIPE_SECRET_KEY = getattr(config, "STRIPE_SECRET_KEY", STRIPE_SECRET_KEY)
    STRIPE_PUBLISHABLE_KEY = getattr(config, "STRIPE_PUBLISHABLE_KEY", STRIPE_PUBLISHABLE_KEY)
    STRIPE_WEBHOOK_SECRET = getattr(config, "STRIPE_WEBHOOK_SECRET", STRIPE_WEBHOOK_SECRET)
    PAYMENT_API_KEY = getattr(config, "PAYMENT_API_KEY", PAYMENT_API_KEY)
    ADMIN_PASSWORD_HASH = getattr(config, "ADMIN_PASSWORD_HASH", ADMIN_PASSWORD_HASH)
except ImportError:
    pass

OWNER_EMAIL = OWNER_EMAIL or EMAIL_USER
SUPPORT_EMAIL = SUPPORT_EMAIL or EMAIL_USER


def stripe_configured() -> bool:
    return bool(STRIPE_SECRET_KEY and STRIPE_PUBLISHABLE_KEY)
