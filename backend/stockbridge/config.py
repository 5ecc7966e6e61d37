"""
Configuration settings for StockBridge
"""
import os
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings

# Resolve .env paths relative to this file so settings load regardless of cwd.
_CONFIG_DIR = Path(__file__).resolve().parent.parent  # backend/
_PROJECT_ROOT = _CONFIG_DIR.parent
_ENV_CANDIDATES = [
    _CONFIG_DIR / ".env",
    _PROJECT_ROOT / ".env",
]
_ENV_FILE = [str(p) for p in _ENV_CANDIDATES if p.is_file()]

# Load .env into os.environ so the os.getenv defaults below see it too.
import dotenv

for _p in _ENV_CANDIDATES:
    if _p.is_file():
        dotenv.load_dotenv(_p, override=False)
        break


class Settings(BaseSettings):
    """Application settings"""

    # App
    APP_NAME: str = "StockBridge"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_NAME: str = os.getenv("DB_NAME", "stockbridge")
    DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
    DB_USER: str = os.getenv("DB_USER", "postgres")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")
    # Apply database/migrations/*.sql on startup (PostgreSQL only)
    RUN_MIGRATIONS_ON_STARTUP: bool = os.getenv("RUN_MIGRATIONS_ON_STARTUP", "true").lower() in ("true", "1", "yes")

    @property
    def database_connection_string(self) -> str:
        """Build database connection string"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # CORS - comma-separated
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list."""
        origins = [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]
        return list(dict.fromkeys(origins))

    # Square (POS snapshot + catalog source)
    SQUARE_ACCESS_TOKEN: str = os.getenv("SQUARE_ACCESS_TOKEN", "").strip()
    # "sandbox" or "production"
    SQUARE_ENVIRONMENT: str = os.getenv("SQUARE_ENVIRONMENT", "production").strip().lower()
    SQUARE_API_VERSION: str = os.getenv("SQUARE_API_VERSION", "2024-07-17")
    SQUARE_TIMEOUT_SECONDS: int = int(os.getenv("SQUARE_TIMEOUT_SECONDS", "30"))
    CATALOG_CACHE_TTL_SECONDS: int = int(os.getenv("CATALOG_CACHE_TTL_SECONDS", "600"))

    @property
    def square_base_url(self) -> str:
        if self.SQUARE_ENVIRONMENT == "sandbox":
            return "https://connect.squareupsandbox.com"
        return "https://connect.squareup.com"

    # Migration engine
    LOOKUP_CONCURRENCY: int = int(os.getenv("LOOKUP_CONCURRENCY", "20"))  # parallel catalog lookups per chunk
    EXTRACTION_MAX_AUTO_ADVANCE: int = int(os.getenv("EXTRACTION_MAX_AUTO_ADVANCE", "50"))
    MIGRATION_TRANSACTION_TIMEOUT_MS: int = int(os.getenv("MIGRATION_TRANSACTION_TIMEOUT_MS", "30000"))
    SUPPLIER_SUGGESTION_CANDIDATES: int = int(os.getenv("SUPPLIER_SUGGESTION_CANDIDATES", "200"))
    MAX_EXTRACTED_AMOUNT: float = float(os.getenv("MAX_EXTRACTED_AMOUNT", "10000"))

    class Config:
        env_file = _ENV_FILE if _ENV_FILE else [".env", "../.env"]
        case_sensitive = True
        extra = "ignore"


settings = Settings()
