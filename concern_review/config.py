"""Configuration management using Pydantic settings"""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Database configuration"""

    backend: str = Field(default="postgres", description="Storage backend (postgres or memory)")
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="concern_review", description="Database name")
    user: str = Field(default="concern_review", description="Database user")
    password: str = Field(default="", description="Database password")
    min_connections: int = Field(default=1, description="Minimum pooled connections")
    pool_size: int = Field(default=10, description="Connection pool size")
    statement_timeout_ms: int = Field(default=5000, description="Per-statement timeout in milliseconds")
    snapshot_path: Optional[str] = Field(
        default=None,
        description="JSON snapshot file for the memory backend (None keeps it in memory only)"
    )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class APIConfig(BaseSettings):
    """API configuration"""

    host: str = Field(default="0.0.0.0", description="API host")
    port: int = Field(default=8000, description="API port")
    workers: int = Field(default=4, description="Number of workers")
    timeout: int = Field(default=5, description="Request timeout in seconds")
    cors_origins: str = Field(default="*", description="Comma separated list of allowed origins")

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class LoggingConfig(BaseSettings):
    """Logging configuration"""

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="json", description="Log format (json or text)")
    output: str = Field(default="stdout", description="Log output (stdout or file path)")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class SecurityConfig(BaseSettings):
    """Security configuration"""

    jwt_secret: str = Field(default="change-me-in-production", description="JWT secret key")
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_expiry_minutes: int = Field(default=60 * 24, description="JWT expiry in minutes")
    allow_dev_tokens: bool = Field(default=False, description="Expose POST /auth/token outside development")

    model_config = SettingsConfigDict(
        env_prefix="SECURITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class WorkflowConfig(BaseSettings):
    """Concern review workflow configuration"""

    review_deadline_hours: int = Field(default=24, description="Hours a pending concern may wait for class-level review")
    reference_retry_budget: int = Field(default=5, description="Attempts to generate a unique concern reference")
    class_dashboard_cap: int = Field(default=2, description="Concerns shown on a class-level dashboard")
    auto_assign_class_reviewers: bool = Field(
        default=True,
        description="Assign the least loaded class-level reviewer pair on submission"
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings"""

    environment: str = Field(default="development", description="Environment (development, staging, production)")
    debug: bool = Field(default=False, description="Debug mode")

    # Sub-configurations
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def DATABASE_URL(self) -> str:
        """Construct PostgreSQL connection URL from database config."""
        return (
            f"postgresql://{self.database.user}:{self.database.password}"
            f"@{self.database.host}:{self.database.port}/{self.database.name}"
        )

    @property
    def dev_tokens_enabled(self) -> bool:
        """Whether the token issuing endpoint is exposed."""
        return self.environment == "development" or self.security.allow_dev_tokens


# Global settings instance
settings = Settings()
