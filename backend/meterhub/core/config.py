"""
Application configuration management using Pydantic settings.
"""
import json
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Application
    APP_NAME: str = "MeterHub Energy Data Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "local"  # local, staging, production
    
    # API
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    
    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from environment variable.
        
        Supports:
        - JSON array: '["https://example.com","https://app.example.com"]'
        - Comma-separated: 'https://example.com,https://app.example.com'
        - Single string: 'https://example.com'
        """
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                pass
            
            if ',' in v:
                return [origin.strip() for origin in v.split(',') if origin.strip()]
            
            return [v.strip()] if v.strip() else []
        
        return v

    # Storage backend selection (memory or sql)
    STORAGE_BACKEND: str = "sql"

    @field_validator('STORAGE_BACKEND', mode='before')
    @classmethod
    def normalize_storage_backend(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v
    
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./meterhub.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 30
    DB_ECHO: bool = False

    # Resource naming
    SOURCE_URI_PREFIX: str = "http://localhost:8000/api/v1/sources/"
    SERVER_TOOL_NAME: str = "MeterHub Server"

    # Upper bound on concurrent per-leaf queries for one virtual source
    LEAF_QUERY_CONCURRENCY: int = 8

    @field_validator('LEAF_QUERY_CONCURRENCY')
    @classmethod
    def check_leaf_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("LEAF_QUERY_CONCURRENCY must be at least 1")
        return v
    
    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    # Monitoring
    ENABLE_METRICS: bool = True


settings = Settings()
