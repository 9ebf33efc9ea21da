"""
Reconciliation Core - Configuration Management

Centralized configuration for environment variables and the tunable
thresholds of the statement importer and the matching engine.
This module ensures:
- No hardcoded secrets
- Thresholds adjustable per deployment without code changes
- Environment-specific settings (dev/staging/prod)
"""

from typing import List
from functools import lru_cache
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="Async SQLAlchemy URL, e.g. postgresql+asyncpg://... (required in production)"
    )

    # ==================== STATEMENT IMPORT ====================
    CSV_HEADER_SKIP_LINES: int = Field(
        default=12,
        ge=0,
        description="Metadata lines preceding the header row in bank exports"
    )
    CSV_DELIMITER: str = Field(
        default=";",
        min_length=1,
        max_length=1,
        description="Field delimiter of bank exports"
    )
    DEFAULT_CURRENCY: str = Field(
        default="EUR",
        description="Currency used when a statement has no currency column"
    )
    AUTO_CATEGORY_CONFIDENCE: int = Field(
        default=75,
        ge=0,
        le=100,
        description="Confidence assigned to keyword-table categorisation"
    )
    IMPORT_PREVIEW_LIMIT: int = Field(
        default=50,
        ge=1,
        description="Maximum rows returned by an import preview"
    )

    # ==================== MATCHING ====================
    MATCH_DATE_WINDOW_DAYS: int = Field(
        default=7,
        ge=0,
        description="Candidate pre-filter: days either side of the invoice reference date"
    )
    MATCH_AMOUNT_TOLERANCE_PERCENT: float = Field(
        default=0.05,
        ge=0,
        le=1,
        description="Candidate pre-filter: relative tolerance around the invoice total"
    )
    MATCH_MIN_SCORE: int = Field(default=30, ge=0, le=100)
    MATCH_MAX_SUGGESTIONS: int = Field(default=10, ge=1)
    BEST_MATCH_MIN_SCORE: int = Field(default=50, ge=0, le=100)
    AUTO_MATCH_MIN_SCORE: int = Field(default=90, ge=0, le=100)
    MATCH_VENDOR_WEIGHT: int = Field(
        default=0,
        ge=0,
        le=25,
        description="Points for vendor/counterparty name similarity (0 disables the criterion)"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Bank Reconciliation Core API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for deployment.
        Returns list of validation errors.
        """
        errors = []

        if not (self.BEST_MATCH_MIN_SCORE <= self.AUTO_MATCH_MIN_SCORE):
            errors.append("BEST_MATCH_MIN_SCORE must not exceed AUTO_MATCH_MIN_SCORE")

        if self.MATCH_MIN_SCORE > self.BEST_MATCH_MIN_SCORE:
            errors.append("MATCH_MIN_SCORE must not exceed BEST_MATCH_MIN_SCORE")

        if self.is_production:
            if not self.DATABASE_URL:
                errors.append("DATABASE_URL is required")
            elif "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    optional_vars = [
        ("DATABASE_URL", settings.DATABASE_URL, "No database configured, in-memory stores in use"),
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "Not set"
        else:
            status["variables"][name] = "Set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
