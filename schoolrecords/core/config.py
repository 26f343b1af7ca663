from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    db_echo: bool = Field(False, alias="DB_ECHO")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Where the dissolution workflow reads catalogs and sends the commit:
    # "database" uses this process's own DB, "http" talks to RECORDS_API_BASE_URL.
    dissolution_backend: str = Field("database", alias="DISSOLUTION_BACKEND")
    records_api_base_url: Optional[str] = Field(None, alias="RECORDS_API_BASE_URL")
    records_api_timeout_seconds: float = Field(30.0, alias="RECORDS_API_TIMEOUT_SECONDS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
