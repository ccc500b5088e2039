import os
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Database Configuration for Server
    db_user = os.getenv("DB_USER", "root")
    db_password = os.getenv("DB_PASSWORD", "")
    db_host = os.getenv("DB_HOST", "localhost")
    db_port = os.getenv("DB_PORT", "3306")
    db_name = os.getenv("DB_NAME", "field_service_db")

    # SQLAlchemy connection string (DATABASE_URL wins when set, e.g. sqlite for local runs)
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        f"mysql+pymysql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}",
    )
    AUTO_CREATE_TABLES: bool = _env_bool("AUTO_CREATE_TABLES", "true")

    # JWT Settings
    SECRET_KEY: str = os.getenv("SECRET_KEY", "your-super-secret-key-change-in-production")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "360"))

    # Security
    PASSWORD_MIN_LENGTH: int = 6

    # CORS
    BACKEND_CORS_ORIGINS: list = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        # Note: explicit origins only; no wildcard when allow_credentials=True
    ]

    # Visit lifecycle
    # When false, client-supplied totalJourneyTime/totalServiceTime are ignored
    TRUST_CLIENT_DURATIONS: bool = _env_bool("TRUST_CLIENT_DURATIONS", "false")

    # Redis Configuration (latest-location cache)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    LOCATION_CACHE_ENABLED: bool = _env_bool("LOCATION_CACHE_ENABLED", "false")

    # Sync Gateway (client side offline queue)
    SYNC_API_URL: str = os.getenv("SYNC_API_URL", "http://localhost:8000/api")
    SYNC_QUEUE_URL: str = os.getenv("SYNC_QUEUE_URL", "sqlite:///./sync_queue.db")
    SYNC_BATCH_SIZE: int = int(os.getenv("SYNC_BATCH_SIZE", "10"))
    SYNC_MAX_ATTEMPTS: int = int(os.getenv("SYNC_MAX_ATTEMPTS", "5"))
    SYNC_BACKOFF_SECONDS: float = float(os.getenv("SYNC_BACKOFF_SECONDS", "2"))
    SYNC_TIMEOUT_SECONDS: float = float(os.getenv("SYNC_TIMEOUT_SECONDS", "10"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: Optional[str] = os.getenv("LOG_FORMAT")


settings = Settings()
