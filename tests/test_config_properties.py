"""Property-based tests for configuration models and loading.

Feature: catalog-sync
"""

import os
from pathlib import Path

import pytest
import structlog
from hypothesis import given, settings
from hypothesis import strategies as st
from pydantic import ValidationError

from catalog_sync.errors import ConfigurationError
from catalog_sync.models.config import (
    AppConfig,
    PartialReferencePolicy,
    SyncConfig,
    TargetConfig,
)
from catalog_sync.utils.config_loader import ConfigLoader

log = structlog.stdlib.get_logger()

REPO_CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

MINIMAL_YAML = """
source:
  base_url: https://source.example.com
target:
  shop_domain: shop.example.com
  access_token: shpat_test
store:
  backend: memory
"""


@given(st.integers(min_value=0, max_value=20))
def test_max_retries_within_bounds(max_retries: int):
    """Property: Retry budgets between 0 and 20 are accepted unchanged."""
    log.info("test_max_retries_within_bounds", max_retries=max_retries)

    config = SyncConfig(max_retries=max_retries)

    assert config.max_retries == max_retries


@given(st.integers().filter(lambda x: x < 0 or x > 20))
def test_max_retries_out_of_bounds_rejected(max_retries: int):
    """Property: Retry budgets outside 0..20 are rejected."""
    log.info("test_max_retries_out_of_bounds_rejected", max_retries=max_retries)

    with pytest.raises(ValidationError) as exc_info:
        SyncConfig(max_retries=max_retries)

    assert "max_retries" in str(exc_info.value)


@given(st.integers(max_value=-1))
@settings(max_examples=20)
def test_negative_spacing_rejected(spacing: int):
    """Property: Negative call spacing is invalid."""
    log.info("test_negative_spacing_rejected", spacing=spacing)

    with pytest.raises(ValidationError):
        SyncConfig(min_call_spacing_ms=spacing)


def test_sync_defaults():
    config = SyncConfig()

    assert config.min_call_spacing_ms == 300
    assert config.throttle_buffer_ms == 500
    assert config.on_partial_reference_failure == PartialReferencePolicy.DROP_UNRESOLVED
    assert config.max_error_samples == 20


def test_target_endpoint():
    config = TargetConfig(shop_domain="shop.example.com", access_token="x", api_version="2025-04")

    assert config.endpoint == "https://shop.example.com/admin/api/2025-04/graphql.json"


def test_environment_variable_loading():
    """Settings are read from APP_-prefixed environment variables with nested keys."""
    log.info("test_environment_variable_loading")

    env = {
        "APP_SOURCE__BASE_URL": "https://source.example.com",
        "APP_SOURCE__PAGE_SIZE": "50",
        "APP_TARGET__SHOP_DOMAIN": "shop.example.com",
        "APP_TARGET__ACCESS_TOKEN": "shpat_env",
        "APP_SYNC__ON_PARTIAL_REFERENCE_FAILURE": "fail_entity",
        "APP_STORE__BACKEND": "memory",
    }
    os.environ.update(env)
    try:
        config = AppConfig()

        assert str(config.source.base_url).rstrip("/") == "https://source.example.com"
        assert config.source.page_size == 50
        assert config.target.access_token == "shpat_env"
        assert config.sync.on_partial_reference_failure == PartialReferencePolicy.FAIL_ENTITY
        assert config.store.backend == "memory"
    finally:
        for key in env:
            os.environ.pop(key, None)


def test_configuration_file_parsing(tmp_path):
    """A YAML file with ${VAR} references loads with the variables substituted."""
    config_file = tmp_path / "test.yaml"
    config_file.write_text(
        MINIMAL_YAML.replace("shpat_test", "${TEST_SHOP_TOKEN}")
        + """
sync:
  min_call_spacing_ms: 250
  text_replacements:
    "Soundbox Store": "Quell Design"
"""
    )
    os.environ["TEST_SHOP_TOKEN"] = "shpat_from_env"
    try:
        config = ConfigLoader(config_dir=tmp_path).load_config(str(config_file))
    finally:
        os.environ.pop("TEST_SHOP_TOKEN", None)

    assert config.target.access_token == "shpat_from_env"
    assert config.sync.min_call_spacing_ms == 250
    assert config.sync.text_replacements == {"Soundbox Store": "Quell Design"}


def test_shipped_default_configuration_loads(monkeypatch):
    """config/default.yaml loads once its environment variables are set."""
    monkeypatch.setenv("SOURCE_API_BASE_URL", "https://source.example.com")
    monkeypatch.setenv("SHOPIFY_SHOP_DOMAIN", "shop.example.com")
    monkeypatch.setenv("SHOPIFY_ACCESS_TOKEN", "shpat_test")
    monkeypatch.delenv("APP_ENV", raising=False)

    loader = ConfigLoader(config_dir=REPO_CONFIG_DIR)
    config = loader.load_config()

    assert config.source.structured_object_types == ["faq", "meeting_rooms_features"]
    assert config.sync.structured_object_type_aliases == {
        "meeting_rooms_features": "product_rooms_features"
    }
    assert loader.validate_config(config) == []


@pytest.mark.parametrize(
    "content,message",
    [
        ("", "empty"),
        ("- just\n- a list\n", "mapping"),
        ("source: [unclosed\n", "parse"),
    ],
)
def test_malformed_configuration_files(tmp_path, content: str, message: str):
    config_file = tmp_path / "bad.yaml"
    config_file.write_text(content)

    with pytest.raises(ConfigurationError) as exc_info:
        ConfigLoader(config_dir=tmp_path).load_config(str(config_file))

    assert message in str(exc_info.value).lower()


def test_missing_configuration_error_handling(tmp_path):
    """Missing files, unset variables and invalid values raise ConfigurationError."""
    loader = ConfigLoader(config_dir=tmp_path)

    with pytest.raises(ConfigurationError):
        loader.load_config(str(tmp_path / "nope.yaml"))

    with pytest.raises(ConfigurationError):
        loader.load_config()

    unset = tmp_path / "unset.yaml"
    unset.write_text(MINIMAL_YAML.replace("shpat_test", "${DEFINITELY_UNSET_TOKEN_VAR}"))
    with pytest.raises(ConfigurationError) as exc_info:
        loader.load_config(str(unset))
    assert "DEFINITELY_UNSET_TOKEN_VAR" in str(exc_info.value)

    invalid = tmp_path / "invalid.yaml"
    invalid.write_text(MINIMAL_YAML + "sync:\n  max_retries: 99\n")
    with pytest.raises(ConfigurationError):
        loader.load_config(str(invalid))


def test_app_env_selects_configuration_file(tmp_path, monkeypatch):
    (tmp_path / "default.yaml").write_text(MINIMAL_YAML)
    (tmp_path / "staging.yaml").write_text(MINIMAL_YAML.replace("shpat_test", "shpat_staging"))
    monkeypatch.setenv("APP_ENV", "staging")

    config = ConfigLoader(config_dir=tmp_path).load_config()

    assert config.target.access_token == "shpat_staging"


def test_validate_config_warnings(tmp_path):
    """Valid but suspicious settings produce warnings."""
    config_file = tmp_path / "warn.yaml"
    config_file.write_text(
        MINIMAL_YAML
        + """
sync:
  min_call_spacing_ms: 0
  base_backoff_ms: 5000
  max_backoff_ms: 1000
  text_replacements:
    "": "x"
  structured_object_type_aliases:
    never_fetched: other
"""
    )
    loader = ConfigLoader(config_dir=tmp_path)

    warnings = loader.validate_config(loader.load_config(str(config_file)))

    assert len(warnings) == 5
    joined = " ".join(warnings)
    assert "max_backoff_ms" in joined
    assert "min_call_spacing_ms" in joined
    assert "memory" in joined
    assert "never_fetched" in joined
    assert "empty search string" in joined
