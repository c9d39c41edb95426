"""Application configuration management using Pydantic Settings.

This module loads and validates environment variables using Pydantic Settings.
All configuration is loaded from environment variables or a .env file.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        database_url: SQLAlchemy connection string
        database_pool_size: Number of connections to maintain in pool
        database_max_overflow: Maximum overflow connections beyond pool_size
        environment: Application environment (development, staging, production)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        templates_dir: Path to directory containing form template YAML files
        secret_key: Secret key used to salt signing credential hashes
        signing_hash_iterations: PBKDF2 iterations for signing credentials
        max_expression_length: Longest expression source accepted
        max_expression_depth: Deepest parenthesis nesting accepted
        max_pattern_length: Longest validation regex accepted
        pattern_max_input_length: Longest input a validation regex is run against
        min_reason_length: Minimum trimmed length of a reason for change
    """

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./edc_engine.db",
        description="SQLAlchemy connection string"
    )
    database_pool_size: int = Field(
        default=5,
        description="Number of database connections in pool"
    )
    database_max_overflow: int = Field(
        default=10,
        description="Maximum overflow connections beyond pool size"
    )

    # Application Configuration
    environment: str = Field(
        default="development",
        description="Application environment"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    templates_dir: str = Field(
        default="./templates",
        description="Path to form templates directory"
    )

    # Security Configuration
    secret_key: str = Field(
        default="change-me",
        description="Secret key used to salt signing credential hashes"
    )
    signing_hash_iterations: int = Field(
        default=120_000,
        ge=1,
        description="PBKDF2 iterations for signing credentials"
    )

    # Form Engine Limits
    max_expression_length: int = Field(
        default=500,
        ge=1,
        description="Maximum expression length in characters"
    )
    max_expression_depth: int = Field(
        default=10,
        ge=1,
        description="Maximum parenthesis nesting depth in expressions"
    )
    max_pattern_length: int = Field(
        default=200,
        ge=1,
        description="Maximum validation pattern length in characters"
    )
    pattern_max_input_length: int = Field(
        default=10_000,
        ge=1,
        description="Inputs longer than this are not matched against patterns"
    )
    min_reason_length: int = Field(
        default=5,
        ge=1,
        description="Minimum trimmed length of a reason for change"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Refuse the placeholder secret outside development."""
        environment = info.data.get("environment", "development")
        if environment == "production" and v == "change-me":
            raise ValueError("SECRET_KEY must be set in production")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings singleton

    Note:
        Uses lru_cache to ensure settings are only loaded once
        and shared across the application.
    """
    return Settings()
