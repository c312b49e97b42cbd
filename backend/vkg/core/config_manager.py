"""
Centralized Configuration Manager
Provides unified configuration management with validation and environment overrides
"""

import logging
from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VKGSettings(BaseSettings):
    """Pipeline settings with validation"""

    # Application Settings
    app_name: str = Field(default="vkg-query-pipeline", description="Application name")
    environment: str = Field(default="development", description="Runtime environment")
    log_level: str = Field(default="INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR/CRITICAL)")
    log_json: bool = Field(default=False, description="Render logs as JSON instead of key=value")
    query_mode: str = Field(default="vkg_federated", description="Query mode echoed in every response")

    # Retry Orchestrator
    max_sql_attempts: int = Field(default=3, ge=1, le=10, description="Total plan+SQL generation attempts per question")
    sql_row_limit: int = Field(default=1000, ge=1, le=100000, description="LIMIT appended to generated SQL without one")

    # Oracle (LLM) sampling and deadlines
    generation_temperature: float = Field(default=0.1, ge=0.0, le=2.0, description="Temperature for plan+SQL generation")
    answer_temperature: float = Field(default=0.3, ge=0.0, le=2.0, description="Temperature for answer synthesis")
    generation_max_tokens: Optional[int] = Field(default=4096, ge=1, description="Max tokens for plan+SQL generation")
    answer_max_tokens: Optional[int] = Field(default=1024, ge=1, description="Max tokens for answer synthesis")
    answer_sample_rows: int = Field(default=20, ge=1, le=500, description="Rows rendered into the answer prompt")
    oracle_timeout_seconds: float = Field(default=60.0, gt=0, description="Deadline for a single oracle call")

    # Query LLM provider
    QUERY_LLM_PROVIDER: str = Field(
        default="gemini",
        pattern=r"^(gemini|bedrock|openai)$",
        description="LLM provider for plan/SQL generation and answers",
    )
    QUERY_LLM_MODEL: Optional[str] = Field(default=None, description="Override LLM model name")
    GOOGLE_API_KEY: Optional[str] = Field(default=None, description="Google Gemini API key")
    OPENAI_API_KEY: Optional[str] = Field(default=None, description="OpenAI-compatible API key")
    OPENAI_BASE_URL: Optional[str] = Field(default=None, description="OpenAI-compatible base URL")
    aws_region: str = Field(default="us-east-1", pattern=r"^[a-z0-9-]+$", description="AWS region for Bedrock")

    # Federated engine (Trino)
    TRINO_URL: str = Field(default="http://localhost:8080", description="Trino coordinator base URL")
    TRINO_USER: str = Field(default="vkg", min_length=1, description="Trino user header")
    trino_poll_interval_seconds: float = Field(default=0.1, ge=0.0, le=10.0, description="Delay between nextUri polls")
    trino_max_poll_attempts: int = Field(default=600, ge=1, description="Maximum nextUri polls per statement")
    engine_timeout_seconds: float = Field(default=120.0, gt=0, description="Deadline for a single SQL execution")

    # Schema cache
    schema_cache_backend: str = Field(default="memory", pattern=r"^(memory|redis)$", description="Schema cache backend")
    schema_cache_ttl_seconds: int = Field(default=600, ge=1, le=86400, description="Schema/mapping cache TTL")
    REDIS_HOST: str = Field(default="localhost", description="Redis host")
    REDIS_PORT: int = Field(default=6379, ge=1, le=65535, description="Redis port")
    REDIS_PASSWORD: str = Field(default="", description="Redis password (load from .env)")
    REDIS_CACHE_DB: int = Field(default=1, ge=0, le=15, description="Redis database for caching")

    # Graph builder
    graph_naming_heuristics: bool = Field(
        default=False,
        description="Classify unmapped result columns by naming pattern (customer_id -> Customer)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment setting"""
        valid_environments = ["development", "staging", "production", "test"]
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level setting"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @property
    def REDIS_URL(self) -> str:
        """Generate Redis URL dynamically from components"""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_CACHE_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_CACHE_DB}"


class ConfigurationManager:
    """Centralized configuration manager"""

    _instance: Optional[VKGSettings] = None
    _logger = logging.getLogger(__name__)

    @classmethod
    def get_settings(cls) -> VKGSettings:
        """Get the global settings instance with singleton pattern"""
        if cls._instance is None:
            try:
                cls._instance = VKGSettings()
                cls._logger.info(f"Configuration loaded for environment: {cls._instance.environment}")
            except ValidationError as e:
                cls._logger.error(f"Configuration validation failed: {e}")
                raise
        return cls._instance

    @classmethod
    def reload_settings(cls) -> VKGSettings:
        """Reload configuration (useful for testing or dynamic config changes)"""
        cls._instance = None
        return cls.get_settings()


# Global settings instance
settings = ConfigurationManager.get_settings()


def get_settings() -> VKGSettings:
    """Get the global settings instance"""
    return ConfigurationManager.get_settings()
