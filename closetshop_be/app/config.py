import os
from functools import lru_cache

from dotenv import load_dotenv, find_dotenv

# Prefer loading environment variables from a .env file when one is present
_env_path = find_dotenv(usecwd=True)
if _env_path:
    load_dotenv(_env_path, override=False)


class Settings:
    DATABASE_URL: str = os.getenv("DATABASE_URL")
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change_me_secret")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
    # Default to 7 days so users stay logged in for a week
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))

    # PortOne (iamport) payment verification. Leaving the key or secret empty
    # disables verification, which is only acceptable in development.
    PORTONE_API_KEY: str = os.getenv("PORTONE_API_KEY", "")
    PORTONE_API_SECRET: str = os.getenv("PORTONE_API_SECRET", "")
    PORTONE_API_URL: str = os.getenv("PORTONE_API_URL", "https://api.iamport.kr")
    PORTONE_TIMEOUT_SECONDS: float = float(os.getenv("PORTONE_TIMEOUT_SECONDS", "10"))

    # Pricing (KRW)
    SHIPPING_FEE: int = int(os.getenv("SHIPPING_FEE", "3000"))
    FREE_SHIPPING_THRESHOLD: int = int(os.getenv("FREE_SHIPPING_THRESHOLD", "50000"))

    ORDERS_PAGE_SIZE: int = int(os.getenv("ORDERS_PAGE_SIZE", "10"))
    ADMIN_ORDERS_PAGE_SIZE: int = int(os.getenv("ADMIN_ORDERS_PAGE_SIZE", "20"))

    @property
    def payment_verification_enabled(self) -> bool:
        return bool(self.PORTONE_API_KEY and self.PORTONE_API_SECRET)


@lru_cache
def get_settings():
    return Settings()
