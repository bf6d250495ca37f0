"""Tests for configuration validation."""
import logging

import pytest

from worldgate.core.config import Settings, validate_config


def _settings(**overrides):
    base = {"ADMIN_KEY": "k", "PLAN_STORE": "memory", "DATABASE_URL": None, "TEST_DATABASE_URL": None}
    base.update(overrides)
    return Settings(_env_file=None, **base)


def test_valid_memory_config_passes():
    assert validate_config(strict=True, settings_obj=_settings()) is True


def test_sql_store_without_url_raises_in_strict_mode():
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        validate_config(strict=True, settings_obj=_settings(PLAN_STORE="sql"))


def test_missing_admin_key_only_warns_when_not_strict(caplog):
    with caplog.at_level(logging.WARNING):
        assert validate_config(strict=False, settings_obj=_settings(ADMIN_KEY=None)) is True
    assert "ADMIN_KEY" in caplog.text


def test_unknown_store_rejected():
    with pytest.raises(RuntimeError, match="PLAN_STORE"):
        validate_config(strict=True, settings_obj=_settings(PLAN_STORE="redis"))


def test_retention_below_largest_rate_ceiling_rejected():
    with pytest.raises(RuntimeError, match="USAGE_EVENT_RETENTION must be at least 60"):
        validate_config(strict=True, settings_obj=_settings(USAGE_EVENT_RETENTION=10))
