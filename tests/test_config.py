"""Unit tests for settings loading and structlog configuration."""

from __future__ import annotations

from unittest.mock import patch

import structlog

from src.salescrm.config import Environment, Settings, get_settings
from src.salescrm.core.logging import configure_structlog


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.CRM_ROOT_COLLECTION == "crm"
        assert settings.CRM_MAIN_DOC == "main"
        assert settings.QUOTATION_TASK_DUE_DAYS == 7
        assert settings.QUOTATION_VALIDITY_DAYS == 30
        assert settings.DEFAULT_TAX_RATE == 5.0
        assert settings.CURRENCY == "AED"
        assert settings.SEED_ON_START is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("QUOTATION_TASK_DUE_DAYS", "3")
        monkeypatch.setenv("SEED_ON_START", "false")
        settings = Settings()
        assert settings.ENVIRONMENT == Environment.production
        assert settings.QUOTATION_TASK_DUE_DAYS == 3
        assert settings.SEED_ON_START is False

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()


class TestConfigureStructlog:
    def test_production_uses_json_renderer(self):
        with patch.object(structlog, "configure") as configure:
            configure_structlog(Settings(ENVIRONMENT="production"))
        processors = configure.call_args.kwargs["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_development_uses_console_renderer(self):
        with patch.object(structlog, "configure") as configure:
            configure_structlog(Settings(ENVIRONMENT="development"))
        processors = configure.call_args.kwargs["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
