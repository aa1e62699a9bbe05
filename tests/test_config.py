"""Unit tests for settings loading and validation."""

from dataclasses import replace

import pytest

from dnsfik.config import Settings, load_config_file, load_settings, validate_settings
from dnsfik.errors import ConfigurationError

# =============================================================================
# Environment
# =============================================================================


def test_defaults_without_environment(tmp_path) -> None:
    settings = load_settings({"DNSFIK_CONFIG_PATH": str(tmp_path / "missing.yaml")})

    assert settings.cloudflare_token == ""
    assert settings.docker_socket == "/var/run/docker.sock"
    assert settings.dns_label_prefix == "dns.cloudflare."
    assert settings.dns_default_proxied is True
    assert settings.dns_default_ttl == 1
    assert settings.task_processing_interval == 5.0
    assert settings.task_max_attempts == 3
    assert settings.log_level == "INFO"


def test_environment_values_are_converted(tmp_path) -> None:
    env = {
        "DNSFIK_CONFIG_PATH": str(tmp_path / "missing.yaml"),
        "CLOUDFLARE_TOKEN": "tok",
        "CLOUDFLARE_ZONE_ID": "zone",
        "DOCKER_SOCKET": "/run/docker.sock",
        "TASK_PROCESSING_INTERVAL": "2.5",
        "DNS_DEFAULT_TTL": "300",
        "DNS_DEFAULT_PROXIED": "no",
        "USE_TRAEFIK_LABELS": "TRUE",
        "LOG_LEVEL": "debug",
    }

    settings = load_settings(env)

    assert settings.cloudflare_token == "tok"
    assert settings.cloudflare_zone_id == "zone"
    assert settings.docker_socket == "/run/docker.sock"
    assert settings.task_processing_interval == 2.5
    assert settings.dns_default_ttl == 300
    assert settings.dns_default_proxied is False
    assert settings.use_traefik_labels is True
    assert settings.log_level == "debug"


def test_invalid_boolean_raises(tmp_path) -> None:
    env = {"DNSFIK_CONFIG_PATH": str(tmp_path / "missing.yaml"), "USE_TRAEFIK_LABELS": "maybe"}

    with pytest.raises(ConfigurationError, match="USE_TRAEFIK_LABELS"):
        load_settings(env)


def test_invalid_number_raises(tmp_path) -> None:
    env = {"DNSFIK_CONFIG_PATH": str(tmp_path / "missing.yaml"), "TASK_MAX_ATTEMPTS": "three"}

    with pytest.raises(ConfigurationError, match="TASK_MAX_ATTEMPTS"):
        load_settings(env)


# =============================================================================
# Config File
# =============================================================================


def test_config_file_supplies_values(tmp_path) -> None:
    config = tmp_path / "dnsfik.yaml"
    config.write_text(
        """
cloudflare_zone_id: "abc"
dns_default_ttl: 120
use_traefik_labels: true
ip_check_interval: 60
"""
    )

    settings = load_settings({"DNSFIK_CONFIG_PATH": str(config)})

    assert settings.cloudflare_zone_id == "abc"
    assert settings.dns_default_ttl == 120
    assert settings.use_traefik_labels is True
    assert settings.ip_check_interval == 60.0
    assert settings.config_path == str(config)


def test_environment_overrides_config_file(tmp_path) -> None:
    config = tmp_path / "dnsfik.yaml"
    config.write_text("cloudflare_zone_id: from-file\nlog_level: WARNING\n")

    settings = load_settings({"DNSFIK_CONFIG_PATH": str(config), "CLOUDFLARE_ZONE_ID": "from-env"})

    assert settings.cloudflare_zone_id == "from-env"
    assert settings.log_level == "WARNING"


def test_config_file_keys_are_case_insensitive(tmp_path) -> None:
    config = tmp_path / "dnsfik.yaml"
    config.write_text("CLOUDFLARE_TOKEN: abc\n")

    assert load_config_file(str(config)) == {"cloudflare_token": "abc"}


def test_missing_and_empty_config_files(tmp_path) -> None:
    assert load_config_file(str(tmp_path / "nope.yaml")) == {}

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_config_file(str(empty)) == {}


def test_invalid_yaml_raises(tmp_path) -> None:
    config = tmp_path / "bad.yaml"
    config.write_text("cloudflare_token: [unclosed\n")

    with pytest.raises(ConfigurationError, match="Failed to load config"):
        load_config_file(str(config))


def test_non_mapping_config_raises(tmp_path) -> None:
    config = tmp_path / "list.yaml"
    config.write_text("- a\n- b\n")

    with pytest.raises(ConfigurationError, match="mapping"):
        load_config_file(str(config))


# =============================================================================
# Validation
# =============================================================================


@pytest.fixture
def valid_settings() -> Settings:
    return Settings(cloudflare_token="tok", cloudflare_zone_id="zone")


def test_valid_settings_have_no_errors(valid_settings) -> None:
    assert validate_settings(valid_settings) == []


def test_missing_credentials_are_reported() -> None:
    errors = validate_settings(Settings())

    assert "CLOUDFLARE_TOKEN is required" in errors
    assert "CLOUDFLARE_ZONE_ID is required" in errors


@pytest.mark.parametrize(
    "changes, expected",
    [
        ({"dns_default_type": "SRV"}, "DNS_DEFAULT_TYPE"),
        ({"dns_default_ttl": 0}, "DNS_DEFAULT_TTL"),
        ({"task_max_attempts": 0}, "TASK_MAX_ATTEMPTS"),
        ({"task_retry_delay": -1.0}, "TASK_RETRY_DELAY"),
        ({"task_retry_backoff": "linear"}, "TASK_RETRY_BACKOFF"),
        ({"task_processing_interval": 0.0}, "TASK_PROCESSING_INTERVAL"),
        ({"ip_check_interval": 0.0}, "IP_CHECK_INTERVAL"),
    ],
)
def test_invalid_values_are_reported(valid_settings, changes, expected) -> None:
    errors = validate_settings(replace(valid_settings, **changes))

    assert len(errors) == 1
    assert expected in errors[0]


def test_default_type_is_case_insensitive(valid_settings) -> None:
    assert validate_settings(replace(valid_settings, dns_default_type="cname")) == []
