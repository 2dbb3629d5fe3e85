from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, List, Union


class Settings(BaseSettings):
    # Database
    database_url: str

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None
    redis_db: int = 0

    # Firebase
    firebase_project_id: str
    firebase_credentials_path: str
    firebase_check_revoked: bool = False

    # API
    api_v1_str: str = "/api/v1"
    secret_key: str

    # Environment
    environment: str = "development"
    debug: bool = True

    # Encryption (Fernet key for n8n API keys at rest)
    encryption_key: str

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    # n8n remote API
    n8n_request_timeout: float = 30.0
    n8n_page_size: int = 250  # n8n API max
    n8n_api_cache_enabled: bool = False
    n8n_cache_ttl_minutes: int = 2
    n8n_release_url: str = "https://registry.npmjs.org/n8n/latest"
    n8n_release_cache_ttl_minutes: int = 60

    # Rate limiting
    rate_limit_enabled: bool = True
    scan_rate_limit_per_minute: int = 5

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from environment variable (comma-separated) or use default list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
