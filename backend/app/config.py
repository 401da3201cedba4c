"""
LoveCakes Backend — Application Configuration
===============================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
       The database section is additionally exposed as a `DatabaseConfig`
       model, the only configuration object the connection pool consumes.
Who:   Imported by every module that needs configuration values.
When:  Loaded once at module import time; validated before app starts.

DatabaseConfig shape (recognized keys only):
    {
        "host": "localhost",
        "port": 1433,
        "user": "sa",
        "password": "...",
        "database": "lovecakes",
        "pool": {"min": 0, "max": 10, "idleTimeoutMs": 1800000},
        "options": {"driver": "...", "encrypt": true, "trustServerCertificate": true}
    }
"""

from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


# ══════════════════════════════════════════════════════════════════════════
# Database Configuration Object
# ══════════════════════════════════════════════════════════════════════════


class PoolLimits(BaseModel):
    """
    Connection pool sizing.

    `idleTimeoutMs` becomes the engine's pool_recycle: the maximum age of a
    pooled connection, applied to busy connections too. Keep it in minutes,
    not seconds, or connections are reopened constantly under load.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    min: int = Field(default=0, ge=0, le=100)
    max: int = Field(default=10, ge=1, le=100)
    idle_timeout_ms: int = Field(default=1_800_000, ge=1_000, alias="idleTimeoutMs")

    @model_validator(mode="after")
    def check_bounds(self) -> "PoolLimits":
        if self.min > self.max:
            raise ValueError(f"pool.min ({self.min}) must not exceed pool.max ({self.max})")
        return self


class DriverOptions(BaseModel):
    """SQL Server ODBC driver options."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    driver: str = Field(default="ODBC Driver 18 for SQL Server")
    encrypt: bool = Field(default=True)
    trust_server_certificate: bool = Field(default=False, alias="trustServerCertificate")
    connect_timeout: int = Field(default=15, ge=1, le=300, alias="connectTimeout")


class DatabaseConfig(BaseModel):
    """
    What:  Connection settings for the stored-procedure database.
    Who:   Consumed once by DatabasePool when it builds the engine.

    Unknown keys are rejected so that a typo in deployment configuration
    fails at startup instead of silently falling back to a default.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    host: str = Field(min_length=1)
    port: int = Field(default=1433, ge=1, le=65535)
    user: str = Field(min_length=1)
    password: str = Field(default="", repr=False)
    database: str = Field(min_length=1)
    pool: PoolLimits = Field(default_factory=PoolLimits)
    options: DriverOptions = Field(default_factory=DriverOptions)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DatabaseConfig":
        """Build from a plain mapping, e.g. one loaded from JSON or YAML."""
        return cls.model_validate(dict(data))


# ══════════════════════════════════════════════════════════════════════════
# Application Settings
# ══════════════════════════════════════════════════════════════════════════


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Production deployments MUST override DB_HOST, DB_USER, DB_PASSWORD and
    CORS_ORIGINS, and set ENVIRONMENT=production.
    """

    # ── Environment ───────────────────────────────────────────────────────
    # development: stack traces are included in error envelopes
    environment: str = Field(default="development")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid = {"development", "production", "test"}
        lower = v.lower()
        if lower not in valid:
            raise ValueError(f"Invalid environment '{v}'. Must be one of: {valid}")
        return lower

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    # ── Database ──────────────────────────────────────────────────────────
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=1433, ge=1, le=65535)
    db_user: str = Field(default="sa")
    db_password: str = Field(default="", repr=False)
    db_name: str = Field(default="lovecakes")

    # Pool sizing: min connections kept open, max open at once
    db_pool_min: int = Field(default=0, ge=0, le=100)
    db_pool_max: int = Field(default=10, ge=1, le=100)
    # Maximum pooled connection age (pool_recycle), not an idle-only timeout
    db_pool_idle_timeout_ms: int = Field(default=1_800_000, ge=1_000)

    db_driver: str = Field(default="ODBC Driver 18 for SQL Server")
    db_encrypt: bool = Field(default=True)
    db_trust_server_certificate: bool = Field(default=False)
    db_connect_timeout: int = Field(default=15, ge=1, le=300)

    # What: Default deadline (seconds) for one stored-procedure invocation,
    # covering connection checkout and execution. None disables the deadline.
    db_request_timeout: Optional[float] = Field(default=30.0, gt=0)

    # What: Parameter names whose values may appear in failure logs.
    # Everything else is logged as "***".
    # Format: Comma-separated names (parsed by the property below)
    db_loggable_parameters: str = Field(default="id,idAccount,idUser,page,pageSize")

    @property
    def db_loggable_parameters_set(self) -> frozenset:
        return frozenset(
            name.strip().lstrip("@")
            for name in self.db_loggable_parameters.split(",")
            if name.strip()
        )

    # What: Build the pool during startup instead of on the first request
    db_connect_on_startup: bool = Field(default=False)

    # What: Let GET /health construct the pool if it does not exist yet
    health_check_database: bool = Field(default=False)

    # ── Startup Retry ─────────────────────────────────────────────────────
    # Used by app.backend_pre_start (tenacity) while the database boots
    db_startup_max_attempts: int = Field(default=60, ge=1, le=600)
    db_startup_wait_seconds: float = Field(default=1.0, ge=0)

    # ── CORS ──────────────────────────────────────────────────────────────
    cors_origins: str = Field(default="http://localhost:5173")

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=3000, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    def database_config(self) -> DatabaseConfig:
        """
        What:  Projects the DB_* settings onto a DatabaseConfig.
        When:  Called once by create_app() when the pool is created.
        """
        return DatabaseConfig(
            host=self.db_host,
            port=self.db_port,
            user=self.db_user,
            password=self.db_password,
            database=self.db_name,
            pool=PoolLimits(
                min=self.db_pool_min,
                max=self.db_pool_max,
                idle_timeout_ms=self.db_pool_idle_timeout_ms,
            ),
            options=DriverOptions(
                driver=self.db_driver,
                encrypt=self.db_encrypt,
                trust_server_certificate=self.db_trust_server_certificate,
                connect_timeout=self.db_connect_timeout,
            ),
        )


# Singleton instance — imported throughout the application
settings = Settings()
