# salesdesk/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # --- Database ---
    database_url: str = "sqlite:///salesdesk/salesdesk_dev.db"

    # --- Security / JWT ---
    jwt_secret: str = "dev-secret-please-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 12

    # --- CORS ---
    cors_origins: List[str] = ["http://localhost:5173"]

    # --- Locale ---
    timezone: str = "Africa/Cairo"
    default_currency: str = "EGP"

    # --- Pricing engine ---
    pv_scale_cap: float = 10.0

    # --- Workflow ---
    default_block_days: int = 7
    conflict_retry_attempts: int = 3
    upstream_retry_attempts: int = 3
    upstream_retry_base_delay: float = 0.05

    # --- Document Generation ---
    render_timeout_seconds: float = 60.0
    # TTF with Arabic glyphs; Helvetica (Latin only) when unset.
    pdf_font_path: Optional[str] = None

    # --- Logging ---
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Ensure path directory exists (for SQLite)
if settings.database_url.startswith("sqlite:///"):
    db_path = Path(settings.database_url.replace("sqlite:///", ""))
    db_path.parent.mkdir(parents=True, exist_ok=True)

# --- SQLAlchemy setup ---
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
