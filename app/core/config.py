from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Seconds a SQLite writer waits for the database lock before failing
    sqlite_busy_timeout: float = Field(30.0, alias="SQLITE_BUSY_TIMEOUT")

    popular_classes_limit: int = Field(6, alias="POPULAR_CLASSES_LIMIT")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
