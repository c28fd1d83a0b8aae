"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str

    # Gemini API (grading, CEFR evaluation, transcription)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-1.5-flash"

    # Redis (empty string disables caching)
    REDIS_URL: str = "redis://redis:6379/0"

    # Auth - tokens are issued elsewhere, we only verify them
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALGORITHM: str = "HS256"

    # Application
    APP_NAME: str = "Language Exam Platform"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:8000"]

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 120
    RATE_LIMIT_PER_HOUR: int = 3000

    # Speaking audio uploads
    UPLOADS_DIR: str = "uploads"
    MAX_AUDIO_UPLOAD_BYTES: int = 10 * 1024 * 1024  # 10MB

    # Exam settings
    DEFAULT_LANGUAGE: str = "uz"
    DEFAULT_ATTEMPT_LEVEL: str = "B1"
    ATTEMPT_HISTORY_DEFAULT_LIMIT: int = 20
    ATTEMPT_HISTORY_MAX_LIMIT: int = 50

    # Access status cache
    ACCESS_STATUS_CACHE_TTL: int = 60  # seconds

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
