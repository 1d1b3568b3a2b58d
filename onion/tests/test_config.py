"""
Where: onion/tests/test_config.py
What: Validate AppConfig defaults, environment overrides and option mapping.
Why: Keep application defaults stable as options are added.
"""

import pytest
from pydantic import ValidationError

from onion import AppConfig, Application
from onion.config import load_config


def test_defaults():
    config = AppConfig(_env_file=None)

    assert config.ENV == "development"
    assert config.KEYS is None
    assert config.PROXY is False
    assert config.SUBDOMAIN_OFFSET == 2
    assert config.PROXY_IP_HEADER == "X-Forwarded-For"
    assert config.MAX_IPS_COUNT == 0
    assert config.SILENT is False
    assert config.LOG_CONFIG_PATH == "logging.yml"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ONION_PROXY", "true")
    monkeypatch.setenv("ONION_SUBDOMAIN_OFFSET", "3")
    monkeypatch.setenv("ONION_KEYS", '["a", "b"]')

    config = AppConfig(_env_file=None)

    assert config.PROXY is True
    assert config.SUBDOMAIN_OFFSET == 3
    assert config.KEYS == ["a", "b"]


def test_options_win_over_environment(monkeypatch):
    monkeypatch.setenv("ONION_ENV", "staging")

    app = Application(env="production")

    assert app.env == "production"


def test_zero_subdomain_offset_is_kept():
    assert load_config(subdomain_offset=0).SUBDOMAIN_OFFSET == 0


def test_negative_values_are_rejected():
    with pytest.raises(ValidationError):
        load_config(max_ips_count=-1)


def test_config_object_and_options_are_exclusive():
    with pytest.raises(TypeError):
        Application(AppConfig(_env_file=None), proxy=True)


def test_application_reads_config_object():
    app = Application(AppConfig(_env_file=None, PROXY=True, SILENT=True))

    assert app.proxy is True
    assert app.silent is True
