import pytest

from tmdbgov.infrastructure.config import settings
from tmdbgov.infrastructure.config.settings import (
    env_var_name,
    get_config,
    get_governor_settings,
    load_configuration,
    set_config_for_testing,
)


@pytest.fixture
def empty_config(tmp_path):
    """Loads configuration from files that do not exist."""
    load_configuration(config_file=tmp_path / "missing.yaml", env_file=tmp_path / "missing.env", force=True)
    yield
    settings._config.clear()


@pytest.fixture
def yaml_config(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "governor:\n"
        "  timeout_ms: 12000\n"
        "  retry_priority: FIFO\n"
        "  timeout_warning:\n"
        "    enabled: true\n"
        "    threshold: 0.6\n"
        "http:\n"
        "  user_agent: test-agent/1.0\n"
    )
    load_configuration(config_file=config_file, env_file=tmp_path / "missing.env", force=True)
    yield config_file
    settings._config.clear()


def test_env_var_name():
    assert env_var_name("governor.timeout_ms") == "TMDBGOV_GOVERNOR_TIMEOUT_MS"
    assert env_var_name("governor.timeout_warning.enabled") == "TMDBGOV_GOVERNOR_TIMEOUT_WARNING_ENABLED"


def test_defaults_apply_without_configuration(empty_config):
    assert get_config("governor.timeout_ms") == 30000
    assert get_config("governor.min_interval_ms") == 25
    assert get_config("governor.retry_priority") == "head"
    assert get_config("unknown.key", "fallback") == "fallback"


def test_yaml_values_are_flattened(yaml_config):
    assert get_config("governor.timeout_ms") == 12000
    assert get_config("governor.timeout_warning.threshold") == 0.6
    assert get_config("http.user_agent") == "test-agent/1.0"


def test_environment_overrides_yaml(yaml_config, monkeypatch):
    monkeypatch.setenv("TMDBGOV_GOVERNOR_TIMEOUT_MS", "5000")
    monkeypatch.setenv("TMDBGOV_GOVERNOR_TIMEOUT_WARNING_ENABLED", "false")

    assert get_config("governor.timeout_ms") == 5000
    assert get_config("governor.timeout_warning.enabled") is False


def test_test_overrides_win_over_environment(yaml_config, monkeypatch):
    monkeypatch.setenv("TMDBGOV_GOVERNOR_TIMEOUT_MS", "5000")
    set_config_for_testing({"governor.timeout_ms": 42})

    assert get_config("governor.timeout_ms") == 42


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    key = "TMDBGOV_GOVERNOR_DEFAULT_RETRIES"
    # Registers the key so monkeypatch removes what load_dotenv sets
    monkeypatch.setenv(key, "placeholder")
    monkeypatch.delenv(key)
    env_file = tmp_path / ".env"
    env_file.write_text(f"{key}=7\n")

    load_configuration(config_file=tmp_path / "missing.yaml", env_file=env_file, force=True)

    assert get_config("governor.default_retries") == 7


def test_malformed_yaml_falls_back_to_defaults(tmp_path, caplog):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("governor: [unclosed\n")

    load_configuration(config_file=config_file, env_file=tmp_path / "missing.env", force=True)

    assert get_config("governor.timeout_ms") == 30000
    assert "Failed to load or parse YAML config" in caplog.text


def test_governor_settings_collects_typed_values(yaml_config):
    governor_settings = get_governor_settings()

    assert governor_settings["timeout_ms"] == 12000
    assert governor_settings["retry_priority"] == "fifo"
    assert governor_settings["timeout_warning_enabled"] is True
    assert governor_settings["timeout_warning_threshold"] == 0.6
    assert governor_settings["default_retries"] == 3
    assert governor_settings["stats_capacity"] == 100
