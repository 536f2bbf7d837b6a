import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """
    Environment-based application configuration.
    """
    database_url: str
    gemini_api_key: Optional[str]
    gemini_model: str
    coingecko_api_base: str
    price_poll_seconds: int
    export_bucket: Optional[str]
    aws_region: str
    log_level: str

    @classmethod
    def load(cls) -> "Settings":
        return cls(
            # Default to local SQLite, but allow override for a hosted Postgres
            database_url=os.getenv("DATABASE_URL", "sqlite:///finance_tracker.db"),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash-exp"),
            coingecko_api_base=os.getenv("COINGECKO_API_BASE", "https://api.coingecko.com/api/v3"),
            price_poll_seconds=_int_env("PRICE_POLL_SECONDS", 90),
            export_bucket=os.getenv("EXPORT_BUCKET") or None,
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
