import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from amcpay.errors import ConfigurationError

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


class Settings(BaseModel):
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    razorpay_api_url: str = "https://api.razorpay.com"
    supabase_jwt_secret: Optional[str] = None
    documents_url: Optional[str] = None
    documents_token: Optional[str] = None
    http_timeout: float = 15.0

    @classmethod
    def from_env(cls) -> "Settings":
        def _get(name):
            # Strip whitespace to avoid invisible copy/paste errors.
            value = (os.getenv(name) or "").strip()
            return value or None

        return cls(
            razorpay_key_id=_get("RAZORPAY_KEY_ID"),
            razorpay_key_secret=_get("RAZORPAY_KEY_SECRET"),
            razorpay_webhook_secret=_get("RAZORPAY_WEBHOOK_SECRET"),
            razorpay_api_url=(_get("RAZORPAY_API_URL") or "https://api.razorpay.com").rstrip("/"),
            supabase_jwt_secret=_get("SUPABASE_JWT_SECRET"),
            documents_url=_get("DOCUMENTS_URL"),
            documents_token=_get("DOCUMENTS_TOKEN"),
            http_timeout=float(_get("HTTP_TIMEOUT") or 15.0),
        )

    def missing(self, *fields: str) -> list:
        return [name.upper() for name in fields if not getattr(self, name)]

    def require(self, *fields: str, message: str = "Payment gateway not configured") -> None:
        """Raise ConfigurationError when any of ``fields`` is unset."""
        missing = self.missing(*fields)
        if missing:
            raise ConfigurationError(message, missing=missing)

    @property
    def documents_configured(self) -> bool:
        return bool(self.documents_url and self.documents_token)


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
