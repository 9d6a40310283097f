from __future__ import annotations

import os

APP_VERSION = "1.0.0"


class Settings:
    PROJECT_NAME: str = "Value Chain Engine"
    API_V1_PREFIX: str = "/api/v1"

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: str = os.getenv("POSTGRES_PORT", "5432")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "valuechain")
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "valuechain")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "valuechain")
    # Full SQLAlchemy URL; takes precedence over the POSTGRES_* parts when set
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "5"))

    RESET_DB: bool = os.getenv("RESET_DB", "").lower() in ("1", "true", "yes")

    ALLOWED_ORIGINS: list[str] = [
        o.strip()
        for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
        if o.strip()
    ]

    # Directories of the subsystems that own linked records. Each must answer
    # GET {url}/{id} with 2xx when the record exists and 404 when it does not.
    # A kind without a URL cannot be validated, so links of that kind are refused.
    PROCEDURE_DIRECTORY_URL: str = os.getenv("PROCEDURE_DIRECTORY_URL", "")
    AGENT_DIRECTORY_URL: str = os.getenv("AGENT_DIRECTORY_URL", "")
    DEPARTMENT_DIRECTORY_URL: str = os.getenv("DEPARTMENT_DIRECTORY_URL", "")
    LINK_CHECK_TIMEOUT_SECONDS: float = float(os.getenv("LINK_CHECK_TIMEOUT_SECONDS", "2.0"))

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
