import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip().lower() for p in raw.split(",")]
    return {p for p in parts if p}


def _getenv_prefixed(prefix: str) -> dict[str, str]:
    found: dict[str, str] = {}
    for name in os.environ:
        if not name.startswith(prefix):
            continue
        value = _getenv(name)
        if value:
            found[name[len(prefix):].lower()] = value
    return found


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./sql_app.db") or "sqlite:///./sql_app.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.frontend_url = _getenv("FRONTEND_URL", "http://localhost:3000") or "http://localhost:3000"

        self.jwt_secret = _getenv("JWT_SECRET")
        self.jwt_audience = _getenv("JWT_AUDIENCE")
        self.jwt_issuer = _getenv("JWT_ISSUER")
        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

        self.stripe_secret_key = _getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = _getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_webhook_tolerance_s = _getenv_int("STRIPE_WEBHOOK_TOLERANCE_S", 300)
        self.stripe_api_base = _getenv("STRIPE_API_BASE", "https://api.stripe.com/v1") or "https://api.stripe.com/v1"
        # STRIPE_PRICE_FIVE_CREDITS=price_123 -> {"five_credits": "price_123"}
        self.stripe_price_ids = _getenv_prefixed("STRIPE_PRICE_")

        self.credit_purchase_requires_subscription = _getenv_bool("CREDIT_PURCHASE_REQUIRES_SUBSCRIPTION", default=True)
        self.listing_days = _getenv_int("LISTING_DAYS", 30)
        self.repost_days_paid = _getenv_int("REPOST_DAYS_PAID", 30)
        self.repost_days_free = _getenv_int("REPOST_DAYS_FREE", 7)
        self.pending_purchase_stale_days = _getenv_int("PENDING_PURCHASE_STALE_DAYS", 7)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def upgrade_url(self) -> str:
        return f"{self.frontend_url}/employers/upgrade"

    def default_success_url(self) -> str:
        return f"{self.frontend_url}/employers/dashboard?purchase_success=true&session_id={{CHECKOUT_SESSION_ID}}"

    def default_cancel_url(self) -> str:
        return f"{self.frontend_url}/employers/dashboard?purchase_cancelled=true"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:3000", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
