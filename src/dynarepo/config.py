"""
Configuration Management for dynarepo

🔧 Unified Configuration System:
Dataclass settings for path resolution, repository behaviour, the SQL
store and logging, with presets per environment and overrides from
DYNAREPO_* environment variables.
"""

import logging
import logging.handlers
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class PathConfig:
    """Property path resolution policy"""
    case_sensitive: bool = True


@dataclass
class RepositoryConfig:
    """Repository behaviour"""
    warn_unordered_pagination: bool = True
    stream_batch_size: int = 100


@dataclass
class SQLConfig:
    """SQL database connection configuration"""
    database_url: str = "sqlite+aiosqlite:///:memory:"
    echo: bool = False
    pool_size: Optional[int] = None
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 3600
    connect_args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class Settings:
    """Complete dynarepo configuration"""
    environment: Environment = Environment.DEVELOPMENT
    paths: PathConfig = field(default_factory=PathConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    sql: SQLConfig = field(default_factory=SQLConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def for_environment(cls, environment: Environment) -> "Settings":
        """Create configuration for specific environment"""
        settings = cls(environment=environment)

        if environment == Environment.DEVELOPMENT:
            settings.logging.level = "DEBUG"
            settings.sql.echo = True

        elif environment == Environment.TESTING:
            settings.sql.database_url = "sqlite+aiosqlite:///:memory:"
            settings.logging.level = "WARNING"

        elif environment == Environment.PRODUCTION:
            settings.logging.level = "INFO"
            settings.repository.warn_unordered_pagination = False
            settings.sql.pool_size = 10

        return settings

    @classmethod
    def from_env(cls) -> "Settings":
        """Create configuration from environment variables"""
        environment = Environment(os.getenv("DYNAREPO_ENV", "development"))
        settings = cls.for_environment(environment)

        if os.getenv("DYNAREPO_DATABASE_URL"):
            settings.sql.database_url = os.getenv("DYNAREPO_DATABASE_URL")

        if os.getenv("DYNAREPO_SQL_ECHO"):
            settings.sql.echo = os.getenv("DYNAREPO_SQL_ECHO").lower() == "true"

        if os.getenv("DYNAREPO_CASE_SENSITIVE_PATHS"):
            settings.paths.case_sensitive = os.getenv("DYNAREPO_CASE_SENSITIVE_PATHS").lower() == "true"

        if os.getenv("DYNAREPO_LOG_LEVEL"):
            settings.logging.level = os.getenv("DYNAREPO_LOG_LEVEL").upper()

        return settings


def configure_logging(config: Optional[LoggingConfig] = None, logger_name: str = "dynarepo") -> logging.Logger:
    """
    Attach a handler to the package logger.

    Logs go to stderr, or to a rotating file when ``file_path`` is set.
    Calling this again replaces the handler installed by the previous call.
    """
    config = config or LoggingConfig()
    logger = logging.getLogger(logger_name)
    logger.setLevel(config.level)

    for handler in list(logger.handlers):
        if getattr(handler, "_dynarepo", False):
            logger.removeHandler(handler)
            handler.close()

    if config.file_path:
        handler = logging.handlers.RotatingFileHandler(
            config.file_path, maxBytes=config.max_file_size, backupCount=config.backup_count
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(config.format))
    handler._dynarepo = True
    logger.addHandler(handler)
    return logger


# Export main components
__all__ = [
    "Environment", "PathConfig", "RepositoryConfig", "SQLConfig", "LoggingConfig",
    "Settings", "configure_logging",
]
