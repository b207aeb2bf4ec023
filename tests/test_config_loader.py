from unittest.mock import patch

import pytest

from effects_gateway.config_loader import load_config_from_env
from effects_gateway.models import BackendKind, Region

_ENV_NAMES = [
    "RUNNINGHUB_API_KEY",
    "RUNNINGHUB_CHINA_DOMAIN",
    "RUNNINGHUB_HONGKONG_DOMAIN",
    "RUNNINGHUB_DEFAULT_REGION",
    "RUNNINGHUB_NONFATAL_CODES",
    "RUNNINGHUB_NOT_FOUND_CODES",
    "RUNNINGHUB_PRIMARY_BACKEND",
    "POLL_INTERVAL_MS",
    "POLL_MAX_ATTEMPTS",
    "RESULT_SETTLE_MS",
    "SUBMIT_TIMEOUT_MS",
    "PORT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from an empty configuration without reading .env."""
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    with patch("effects_gateway.config_loader.load_dotenv"):
        yield monkeypatch


def test_missing_api_key_is_an_error():
    with pytest.raises(ValueError, match="RUNNINGHUB_API_KEY"):
        load_config_from_env()


def test_defaults(clean_env):
    clean_env.setenv("RUNNINGHUB_API_KEY", "secret")

    config = load_config_from_env()

    assert config.api_key == "secret"
    assert config.default_region is Region.HONGKONG
    assert config.nonfatal_codes == frozenset({433})
    assert config.not_found_codes == frozenset()
    assert config.primary_backend is BackendKind.WORKFLOW
    assert config.poll_interval_ms == 5000
    assert config.poll_max_attempts == 150
    assert config.result_settle_seconds == 3.0
    assert config.regions[Region.CHINA].host == "www.runninghub.cn"


def test_overrides(clean_env):
    clean_env.setenv("RUNNINGHUB_API_KEY", "secret")
    clean_env.setenv("RUNNINGHUB_CHINA_DOMAIN", "https://cn.example.test/")
    clean_env.setenv("RUNNINGHUB_DEFAULT_REGION", "china")
    clean_env.setenv("RUNNINGHUB_NONFATAL_CODES", "433, 434, junk")
    clean_env.setenv("RUNNINGHUB_NOT_FOUND_CODES", "807")
    clean_env.setenv("RUNNINGHUB_PRIMARY_BACKEND", "APP")
    clean_env.setenv("POLL_INTERVAL_MS", "250")
    clean_env.setenv("RESULT_SETTLE_MS", "0")
    clean_env.setenv("SUBMIT_TIMEOUT_MS", "1500")
    clean_env.setenv("PORT", "9000")

    config = load_config_from_env()

    assert config.regions[Region.CHINA].base_domain == "https://cn.example.test"
    assert config.regions[Region.CHINA].host == "cn.example.test"
    assert config.default_region is Region.CHINA
    assert config.nonfatal_codes == frozenset({433, 434})
    assert config.not_found_codes == frozenset({807})
    assert config.primary_backend is BackendKind.APP
    assert config.poll_interval_ms == 250
    assert config.result_settle_seconds == 0.0
    assert config.submit_timeout == 1.5
    assert config.port == 9000


def test_unknown_primary_backend_falls_back_to_workflow(clean_env):
    clean_env.setenv("RUNNINGHUB_API_KEY", "secret")
    clean_env.setenv("RUNNINGHUB_PRIMARY_BACKEND", "comfy")

    assert load_config_from_env().primary_backend is BackendKind.WORKFLOW
