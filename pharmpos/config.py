from pydantic_settings import BaseSettings

DEFAULT_SECRET_KEY = "change-me-in-production"


class Settings(BaseSettings):
    APP_NAME: str = "PharmPOS"
    APP_VERSION: str = "1.2.0"
    # OFFLINE = single-tenant local deployment
    APP_MODE: str = "OFFLINE"

    DATABASE_URL: str = "sqlite:///./pharmpos.db"

    # Connection pool (ignored for SQLite). Requests wait up to DB_POOL_TIMEOUT for a free slot.
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: float = 30.0

    # Bearer tokens
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    # Reject unknown filter operators instead of treating them as "eq"
    STRICT_FILTER_OPERATORS: bool = False

    DEFAULT_LOW_STOCK_THRESHOLD: int = 10

    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env"}


settings = Settings()
