from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote_plus
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application configuration loaded from environment variables.
    Uses Pydantic's BaseSettings for robust env parsing and validation.
    """

    # App
    APP_NAME: str = "Trade Documents API"
    PRODUCT_NAME: str = "Apparel Export Documents"
    COMPANY_NAME: Optional[str] = None
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database (support single URL or split parts)
    DATABASE_URL: Optional[str] = None
    DB_SCHEME: str = "postgresql+psycopg"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_NAME: str = "trade_documents"
    DB_STATEMENT_TIMEOUT_MS: int = 15000  # PostgreSQL only
    AUTO_CREATE_TABLES: bool = False  # dev convenience; use Alembic elsewhere

    # Request handling
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Schema-tolerant writes
    SCHEMA_DRIFT_MAX_ATTEMPTS: int = 12

    # Document numbering
    SEQUENCE_PAD_WIDTH: int = 4
    SHIPMENT_NUMBER_PREFIX: str = "SHP"
    INVOICE_NUMBER_PREFIX: str = "JMI"
    PACKING_LIST_NUMBER_PREFIX: str = "PL"
    DEFAULT_ORIGIN_COUNTRY_CODE: str = "JM"

    # JWT / Auth
    JWT_SECRET_KEY: str = "change-this-secret-in-env"  # MUST be overridden in production
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 20
    JWT_ISSUER: str = "trade-documents"
    JWT_AUDIENCE: str = "trade-documents-users"

    # CORS
    # Comma-separated origins, e.g. "http://localhost:3000,https://myapp.com"
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Security middleware toggles
    ENABLE_RATE_LIMITER: bool = True
    RATE_LIMIT_REQUESTS: int = 100  # requests
    RATE_LIMIT_WINDOW_SECONDS: int = 60  # per this many seconds
    RATE_LIMIT_STORAGE_URI: Optional[str] = None  # e.g., "redis://localhost:6379"

    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parses comma-separated origins into a list. Trims spaces, omits empties.
        """
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def is_postgres(self) -> bool:
        return self.build_database_url().startswith("postgresql")

    def build_database_url(self) -> str:
        """
        Compose a SQLAlchemy URL from individual DB_* parts when DATABASE_URL is not provided.
        """
        if self.DATABASE_URL:
            return str(self.DATABASE_URL)
        return f"{self.DB_SCHEME}://{self.DB_USER}:{quote_plus(self.DB_PASSWORD)}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @field_validator("DEBUG", "AUTO_CREATE_TABLES", "ENABLE_RATE_LIMITER", mode="before")
    def _normalize_bool(cls, v):
        # Accept "1", "true", "True", etc.
        if isinstance(v, str):
            return v.lower() in ("1", "true", "yes", "on")
        return bool(v)

    @field_validator("SCHEMA_DRIFT_MAX_ATTEMPTS", "SEQUENCE_PAD_WIDTH")
    def _positive(cls, v):
        if v < 1:
            raise ValueError("must be >= 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance to avoid re-parsing env on each import.
    """
    return Settings()
