"""Tests for environment-driven settings."""

import pytest

from templatebot.config import ConfigError, Settings


def test_defaults():
    settings = Settings.from_env({})

    assert settings.github_token is None
    assert settings.api_url == "https://api.github.com"
    assert settings.branch_prefix == "template-update-"
    assert settings.property_name == "template-repo"
    assert settings.topic_prefix == "template-"
    assert settings.association_backend == "property"
    assert settings.propagation_workers == 1


def test_overrides():
    settings = Settings.from_env({
        "GITHUB_TOKEN": "ghs_abc",
        "GITHUB_API_URL": "https://ghe.example.com/api/v3/",
        "UPDATE_BRANCH_PREFIX": "sync-",
        "CUSTOM_PROPERTY_NAME": "origin",
        "TEMPLATE_TOPIC_PREFIX": "From-",
        "ASSOCIATION_BACKEND": "Migrating",
        "PROPAGATION_WORKERS": "4",
        "LOG_LEVEL": "debug",
    })

    assert settings.github_token == "ghs_abc"
    assert settings.api_url == "https://ghe.example.com/api/v3"
    assert settings.branch_prefix == "sync-"
    assert settings.property_name == "origin"
    assert settings.topic_prefix == "from-"
    assert settings.association_backend == "migrating"
    assert settings.propagation_workers == 4
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("env", [
    {"ASSOCIATION_BACKEND": "database"},
    {"PROPAGATION_WORKERS": "many"},
    {"PROPAGATION_WORKERS": "0"},
    {"UPDATE_BRANCH_PREFIX": ""},
])
def test_invalid_values_raise(env):
    with pytest.raises(ConfigError):
        Settings.from_env(env)
