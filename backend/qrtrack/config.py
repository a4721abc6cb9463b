import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load .env file
load_dotenv()


@dataclass
class Settings:
    database_url: str
    secret_key: str
    access_token_expire_minutes: int
    refresh_token_expire_minutes: int
    public_base_url: Optional[str]
    log_level: str


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        # For local development, use SQLite
        url = "sqlite:///./dev.db"
    # Standardize Postgres URL if needed (Supabase/Heroku often use postgres://)
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def get_settings() -> Settings:
    """Read settings from the environment. Cheap enough to call per use."""
    return Settings(
        database_url=_database_url(),
        secret_key=os.getenv("SECRET_KEY", "replace-this"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15)),
        refresh_token_expire_minutes=int(os.getenv("REFRESH_TOKEN_EXPIRE_MINUTES", 1440)),
        public_base_url=os.getenv("PUBLIC_BASE_URL") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
