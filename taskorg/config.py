from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage
    DATA_DIR: str = "./data"

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 3000
    ALLOWED_ORIGINS: str = "*"

    # Sessions
    COOKIE_SECURE: bool = False
    SESSION_TTL_HOURS: int = 12
    SESSION_REMEMBER_TTL_DAYS: int = 30

    # Login rate limiting
    LOGIN_WINDOW_MINUTES: int = 10
    LOGIN_MAX_ATTEMPTS: int = 8
    LOGIN_BLOCK_MINUTES: int = 15

    # Retention
    ACTIVITY_LIMIT: int = 120
    AUTH_AUDIT_LIMIT: int = 500

    # App
    APP_NAME: str = "Task Organizer"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_prefix": "TASKORG_", "extra": "ignore"}


settings = Settings()
