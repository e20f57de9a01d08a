import os
from typing import List


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/invoicing')
        # Comma-separated list of allowed CORS origins for browser clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:5173", "http://127.0.0.1:5173"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        self.fx_api_url = (
            os.getenv("FX_API_URL") or "https://api.exchangerate-api.com/v4/latest/INR"
        ).strip()
        self.fx_cache_seconds = _env_float("FX_CACHE_SECONDS", 3600.0)
        self.fx_timeout_seconds = _env_float("FX_TIMEOUT_SECONDS", 10.0)
        self.fx_retry_seconds = _env_float("FX_RETRY_SECONDS", 300.0)

        self.payment_sync_quiet_seconds = _env_float("PAYMENT_SYNC_QUIET_SECONDS", 1.0)
        self.lookup_cache_seconds = _env_float("LOOKUP_CACHE_SECONDS", 300.0)

        self.smtp_host = (os.getenv("SMTP_HOST") or "smtp.gmail.com").strip()
        self.smtp_port = int(_env_float("SMTP_PORT", 465))
        self.email_user = (os.getenv("EMAIL_USER") or "").strip()
        self.email_pass = os.getenv("EMAIL_PASS") or ""

settings = Settings()
