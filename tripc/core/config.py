from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "TripC Checkout API"
    # Comma-separated origins for CORS (e.g. https://tripc.vn,https://partner.tripc.vn). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    # Identity provider tokens (HS256 shared secret, or a PEM public key with RS256)
    SECRET_KEY: str
    AUTH_JWT_ALGORITHMS: str = "HS256"
    AUTH_JWT_AUDIENCE: str = ""
    AUTH_JWT_ISSUER: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    APP_BASE_URL: str = "http://localhost:8000"  # used to build provider IPN/callback URLs

    # Hold durations (minutes) per category
    HOLD_MINUTES_DEFAULT: int = 15
    HOLD_MINUTES_TRANSPORT: int = 8
    HOLD_MINUTES_ACTIVITY: int = 10
    HOLD_MINUTES_WELLNESS: int = 10
    # Window a provider-reported in-flight payment keeps its capacity
    PENDING_PAYMENT_MINUTES: int = 30

    CANCELLATION_CUTOFF_HOURS: int = 24
    LOYALTY_POINTS_PER_USD: int = 1

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "bookings@tripc.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    # If True, skip outbound provider calls when creating intents and return a local redirect URL (dev only)
    PAYMENTS_SANDBOX: bool = False

    # MoMo wallet
    MOMO_PARTNER_CODE: str = ""
    MOMO_ACCESS_KEY: str = ""
    MOMO_SECRET_KEY: str = ""
    MOMO_CREATE_ENDPOINT: str = "https://test-payment.momo.vn/v2/gateway/api/create"
    MOMO_QUERY_ENDPOINT: str = "https://test-payment.momo.vn/v2/gateway/api/query"

    # VNPay
    VNPAY_TMN_CODE: str = ""
    VNPAY_HASH_SECRET: str = ""
    VNPAY_PAYMENT_URL: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"

    # PayPal (orders v2 + webhook signature verification)
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_SECRET: str = ""
    PAYPAL_MODE: str = "sandbox"  # sandbox|live
    PAYPAL_WEBHOOK_ID: str = ""

    def hold_minutes_for(self, category: str) -> int:
        return {
            "transport": self.HOLD_MINUTES_TRANSPORT,
            "activity": self.HOLD_MINUTES_ACTIVITY,
            "wellness": self.HOLD_MINUTES_WELLNESS,
        }.get(category, self.HOLD_MINUTES_DEFAULT)


settings = Settings()
