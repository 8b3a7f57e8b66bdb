import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL")
    DB_HOST = os.getenv("DB_HOST")
    DB_PORT = os.getenv("DB_PORT")
    DB_NAME = os.getenv("DB_NAME")
    DB_USER = os.getenv("DB_USER")
    DB_PASSWORD = os.getenv("DB_PASSWORD")

    # Public base URL used in accept / pay links
    DOMAIN = os.getenv("DOMAIN", "http://localhost:8000")

    # TEXTMAGIC (SMS)
    TEXTMAGIC_API_URL = os.getenv("TEXTMAGIC_API_URL", "https://rest.textmagic.com/api/v2")
    TEXTMAGIC_USERNAME = os.getenv("TEXTMAGIC_USERNAME")
    TEXTMAGIC_API_KEY = os.getenv("TEXTMAGIC_API_KEY")

    # ZEPTO MAIL SETTINGS
    ZEPTO_API_URL = os.getenv("ZEPTO_API_URL", "https://api.zeptomail.com/v1.1/email")
    ZEPTO_API_KEY = os.getenv("ZEPTO_API_KEY")
    ZEPTO_FROM_ADDRESS = os.getenv("ZEPTO_FROM_ADDRESS", "hello@goldtouchlist.com")

    # STRIPE
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    # Signs the "Accept & Unlock" email links
    EMAIL_LINK_SECRET = os.getenv("EMAIL_LINK_SECRET")

    # SCHEDULER
    SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "true")
    FOLLOWUP_TICK_SECONDS = int(os.getenv("FOLLOWUP_TICK_SECONDS", "60"))
    AUTO_PROVISION_FOLLOWUP_TABLES = _flag("AUTO_PROVISION_FOLLOWUP_TABLES")

    # LIMITS
    UNLOCK_TTL_HOURS = int(os.getenv("UNLOCK_TTL_HOURS", "24"))
    LEAD_TTL_HOURS = int(os.getenv("LEAD_TTL_HOURS", "24"))
    PROVIDER_HOURLY_SMS_LIMIT = int(os.getenv("PROVIDER_HOURLY_SMS_LIMIT", "10"))

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if not self.DB_HOST:
            return "sqlite:///./leadunlock.db"
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT or 5432}/{self.DB_NAME}"
        )


settings = Settings()
