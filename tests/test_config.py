"""
Configuration tests
"""

import logging

import pytest

from dynarepo import (
    Environment, LoggingConfig, PathConfig, SchemaRegistry, Settings, configure_logging
)

from .entities import Employee


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.environment is Environment.DEVELOPMENT
        assert settings.paths.case_sensitive
        assert settings.repository.warn_unordered_pagination
        assert settings.repository.stream_batch_size == 100
        assert settings.sql.database_url == "sqlite+aiosqlite:///:memory:"

    def test_environment_presets(self):
        assert Settings.for_environment(Environment.DEVELOPMENT).sql.echo
        assert Settings.for_environment(Environment.TESTING).logging.level == "WARNING"

        production = Settings.for_environment(Environment.PRODUCTION)
        assert production.sql.pool_size == 10
        assert not production.repository.warn_unordered_pagination

    def test_presets_do_not_share_state(self):
        Settings.for_environment(Environment.PRODUCTION)
        assert Settings().sql.pool_size is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DYNAREPO_ENV", "testing")
        monkeypatch.setenv("DYNAREPO_DATABASE_URL", "postgresql+asyncpg://localhost/app")
        monkeypatch.setenv("DYNAREPO_SQL_ECHO", "true")
        monkeypatch.setenv("DYNAREPO_CASE_SENSITIVE_PATHS", "false")
        monkeypatch.setenv("DYNAREPO_LOG_LEVEL", "debug")

        settings = Settings.from_env()
        assert settings.environment is Environment.TESTING
        assert settings.sql.database_url == "postgresql+asyncpg://localhost/app"
        assert settings.sql.echo
        assert not settings.paths.case_sensitive
        assert settings.logging.level == "DEBUG"

    def test_unknown_environment(self, monkeypatch):
        monkeypatch.setenv("DYNAREPO_ENV", "moon")
        with pytest.raises(ValueError):
            Settings.from_env()

    def test_registry_from_config(self):
        registry = SchemaRegistry.from_config(PathConfig(case_sensitive=False))
        assert registry.resolve(Employee, "NAME").canonical == "name"


class TestLogging:

    @pytest.fixture
    def package_logger(self):
        logger = logging.getLogger("dynarepo")
        level = logger.level
        yield logger
        for handler in list(logger.handlers):
            if getattr(handler, "_dynarepo", False):
                logger.removeHandler(handler)
                handler.close()
        logger.setLevel(level)

    def test_file_handler(self, package_logger, tmp_path):
        log_file = tmp_path / "dynarepo.log"
        configure_logging(LoggingConfig(level="INFO", file_path=str(log_file)))

        logging.getLogger("dynarepo.persistence.repository").info("hello from the repository")
        for handler in package_logger.handlers:
            handler.flush()
        assert "hello from the repository" in log_file.read_text()

    def test_repeated_calls_replace_the_handler(self, package_logger):
        configure_logging(LoggingConfig(level="DEBUG"))
        configure_logging(LoggingConfig(level="WARNING"))

        installed = [h for h in package_logger.handlers if getattr(h, "_dynarepo", False)]
        assert len(installed) == 1
        assert package_logger.level == logging.WARNING
