"""
Tests for settings loading
"""
import copy

import pytest

from allsales.app import create_app
from allsales.constants import DEFAULT_SETTINGS
from allsales.db import check_database_url
from allsales.exceptions import ValidationException
from allsales.settings import apply_env_overrides, load_settings, redact_settings


class TestLoadSettings:

    def test_defaults(self, tmp_path):
        settings = load_settings(force=True, config_file=str(tmp_path / "missing.yaml"), environ={})

        assert settings["steam"]["request_delay_ms"] == 1000
        assert settings["update"]["cron_schedule"] == "0 */2 * * *"
        assert settings["pagination"]["max_page_size"] == 50

    def test_yaml_file_is_merged(self, tmp_path):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("steam:\n  max_retries: 5\nupdate:\n  concurrency_limit: 2\n")

        settings = load_settings(force=True, config_file=str(config_file), environ={})

        assert settings["steam"]["max_retries"] == 5
        assert settings["steam"]["request_delay_ms"] == 1000
        assert settings["update"]["concurrency_limit"] == 2

    def test_environment_wins_over_file(self, tmp_path):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("steam:\n  max_retries: 5\n")

        settings = load_settings(
            force=True, config_file=str(config_file), environ={"STEAM_API_MAX_RETRIES": "7"}
        )

        assert settings["steam"]["max_retries"] == 7

    def test_cached_until_forced(self, tmp_path):
        first = load_settings(force=True, config_file=str(tmp_path / "none.yaml"), environ={})

        assert load_settings() is first


class TestEnvOverrides:

    def test_types_are_coerced(self):
        settings = apply_env_overrides(copy.deepcopy(DEFAULT_SETTINGS), {
            "STEAM_API_DELAY": "250",
            "RUN_ON_STARTUP": "false",
            "REQUEST_TIMEOUT": "12.5",
            "DATABASE_URL": "postgresql://db/allsales",
        })

        assert settings["steam"]["request_delay_ms"] == 250
        assert settings["update"]["run_on_startup"] is False
        assert settings["steam"]["request_timeout"] == 12.5
        assert settings["database"]["url"] == "postgresql://db/allsales"

    def test_invalid_values_are_ignored(self):
        settings = apply_env_overrides(copy.deepcopy(DEFAULT_SETTINGS), {"MAX_PAGE_SIZE": "many"})

        assert settings["pagination"]["max_page_size"] == 50

    def test_api_key_is_redacted(self):
        settings = apply_env_overrides(copy.deepcopy(DEFAULT_SETTINGS), {"STEAM_API_KEY": "secret"})

        assert redact_settings(settings)["steam"]["api_key"] == "***"
        assert settings["steam"]["api_key"] == "secret"


class TestDatabaseUrl:

    @pytest.mark.parametrize("url,backend", [
        ("sqlite:///data/allsales.db", "sqlite"),
        ("postgresql+psycopg2://user@db/allsales", "postgresql"),
    ])
    def test_supported_backends(self, url, backend):
        assert check_database_url(url) == backend

    def test_unsupported_backend(self):
        with pytest.raises(ValidationException, match="mysql"):
            check_database_url("mysql://user@db/allsales")

    def test_unparseable_url(self):
        with pytest.raises(ValidationException):
            check_database_url("not a database url")

    def test_app_refuses_to_start(self, test_settings, steam):
        test_settings["database"]["url"] = "mssql+pyodbc://user@db/allsales"

        with pytest.raises(ValidationException):
            create_app({"TESTING": True, "CACHE_ENABLED": False}, settings=test_settings, client=steam)
