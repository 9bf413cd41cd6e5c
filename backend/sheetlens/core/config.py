"""
Centralized configuration management.

All application and pipeline configuration is loaded and validated here.
"""
import os
import logging
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Application settings with validation."""

    # File upload settings
    max_file_size_mb: int = Field(default=50, ge=1, le=1000, description="Maximum file size in MB")
    max_file_rows: int = Field(default=10000, ge=100, le=1000000, description="Maximum rows kept from an uploaded file")
    max_file_columns: int = Field(default=1000, ge=10, description="Maximum columns in uploaded file")

    # Rate limiting
    rate_limit_per_minute: int = Field(default=10, ge=1, le=1000, description="Rate limit per minute per IP")

    # CORS
    allowed_origins: str = Field(
        default="http://localhost:5173,http://localhost:3000",
        description="Comma-separated list of allowed CORS origins"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Column classification
    sample_limit: int = Field(default=200, ge=10, le=5000, description="Rows sampled for column classification")
    analysis_sample_limit: int = Field(default=20, ge=1, le=500, description="Rows summarized in the AI prompt")
    date_threshold: float = Field(default=0.6, gt=0.0, le=1.0, description="Share of date-like values for a date column")
    numeric_threshold: float = Field(default=0.6, gt=0.0, le=1.0, description="Share of numeric values for a numeric column")
    day_first: bool = Field(default=True, description="Read ambiguous D/M dates as day-first")

    # Recommendations
    max_recommendations: int = Field(default=4, ge=1, le=20, description="Charts kept per analysis pass")
    max_cards: int = Field(default=4, ge=0, le=20, description="Dashboard cards kept per analysis pass")
    default_top_n: int = Field(default=10, ge=1, le=100, description="Groups shown when a recommendation has no topN")
    max_regeneration_attempts: int = Field(default=5, ge=1, le=50, description="Alternatives a user may request per chart")
    label_locale: str = Field(default="en-US", description="Locale for time bucket labels")

    # AI providers
    groq_model: str = Field(default="llama-3.1-8b-instant", description="Groq model to use")
    gemini_model: str = Field(default="gemini-2.5-flash-lite", description="Gemini model to use")
    ai_max_tokens: int = Field(default=1200, ge=50, le=8000, description="Maximum completion tokens per AI call")
    ai_max_attempts: int = Field(default=2, ge=1, le=10, description="Attempts per AI call before giving up")
    ai_backoff_seconds: float = Field(default=0.5, ge=0.0, le=30.0, description="Initial backoff between AI attempts")

    # Sessions
    session_ttl_seconds: int = Field(default=3600, ge=60, le=86400, description="Lifetime of an analysis session")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @field_validator('label_locale')
    @classmethod
    def validate_label_locale(cls, v: str) -> str:
        """Normalize locale tags such as 'pt_br' to 'pt-BR'."""
        parts = v.replace("_", "-").split("-")
        if len(parts) == 2:
            return f"{parts[0].lower()}-{parts[1].upper()}"
        return parts[0].lower()

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def allowed_origins_list(self) -> List[str]:
        """Get allowed origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            max_file_size_mb=int(os.getenv("MAX_FILE_SIZE_MB", "50")),
            max_file_rows=int(os.getenv("MAX_FILE_ROWS", "10000")),
            max_file_columns=int(os.getenv("MAX_FILE_COLUMNS", "1000")),
            rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "10")),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            sample_limit=int(os.getenv("SAMPLE_LIMIT", "200")),
            analysis_sample_limit=int(os.getenv("ANALYSIS_SAMPLE_LIMIT", "20")),
            date_threshold=float(os.getenv("DATE_THRESHOLD", "0.6")),
            numeric_threshold=float(os.getenv("NUMERIC_THRESHOLD", "0.6")),
            day_first=os.getenv("DAY_FIRST", "true").lower() in ("1", "true", "yes"),
            max_recommendations=int(os.getenv("MAX_RECOMMENDATIONS", "4")),
            max_cards=int(os.getenv("MAX_CARDS", "4")),
            default_top_n=int(os.getenv("DEFAULT_TOP_N", "10")),
            max_regeneration_attempts=int(os.getenv("MAX_REGENERATION_ATTEMPTS", "5")),
            label_locale=os.getenv("LABEL_LOCALE", "en-US"),
            groq_model=os.getenv("GROQ_MODEL", "llama-3.1-8b-instant"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite"),
            ai_max_tokens=int(os.getenv("AI_MAX_TOKENS", "1200")),
            ai_max_attempts=int(os.getenv("AI_MAX_ATTEMPTS", "2")),
            ai_backoff_seconds=float(os.getenv("AI_BACKOFF_SECONDS", "0.5")),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", "3600")),
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info("Configuration loaded and validated successfully")
    return _settings


def reload_settings() -> Settings:
    """Reload settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()
