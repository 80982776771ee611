from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://docpilot:docpilot@db:5432/docpilot"
    database_echo: bool = False
    jwt_secret: str
    jwt_algorithm: str = "HS256"

    # Адрес фронтенда, из него собирается ссылка приглашения
    app_origin: str = "http://localhost:5173"
    cors_origins: List[str] = ["*"]

    invitation_ttl_days: int = 7
    expired_invitation_retention_days: int = 30
    invitation_sweep_interval_seconds: int = 3600
    autosave_interval_seconds: int = 30

    # Resend
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com/emails"
    email_from: str = "DocPilot <noreply@docpilot.dev>"
    email_timeout_seconds: float = 10.0

    log_level: str = "INFO"

    # PostgreSQL variables for Docker
    postgres_user: str = ""
    postgres_password: str = ""
    postgres_db: str = ""

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
