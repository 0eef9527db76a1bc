"""
Application configuration
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Database (required, checked when the engine is created)
    DATABASE_URL: str = ""

    # Application
    APP_NAME: str = "leadsync-core"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "text" or "json"

    # Security
    SECRET_KEY: str = "change-me-in-production"
    TOKEN_ALGORITHM: str = "HS256"
    TOKEN_TTL_HOURS: int = 24
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Facebook Conversions API
    FACEBOOK_GRAPH_URL: str = "https://graph.facebook.com"
    FACEBOOK_API_VERSION: str = "v18.0"

    # Kommo CRM
    KOMMO_BASE_URL: str = "https://api.kommo.com"

    # N8N
    N8N_BASE_URL: str = "http://localhost:5678"
    N8N_WORKFLOWS_DIR: str = "n8n_workflows"

    @property
    def allowed_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables (like VITE_* from the dashboard)


settings = Settings()
