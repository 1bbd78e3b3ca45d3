"""Tests for data source selection."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from fieldscope.config import Config
from fieldscope.exceptions import ConfigurationError
from fieldscope.providers import (
    create_data_source,
    get_data_source,
    reset_data_source,
)
from fieldscope.providers.sentinel_hub import SentinelHubSource
from fieldscope.providers.synthetic import SyntheticSource


@pytest.fixture
def env_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SENTINEL_HUB_CLIENT_ID", "env-id")
    monkeypatch.setenv("SENTINEL_HUB_CLIENT_SECRET", "env-secret")


# ── create_data_source ──────────────────────────────────────────────


@pytest.mark.unit
class TestCreateDataSource:
    """Verify create_data_source() honors mode and credentials."""

    def test_synthetic_mode_ignores_credentials(self, env_credentials: None) -> None:
        source = create_data_source(Config(mode="synthetic"))
        assert isinstance(source, SyntheticSource)
        assert not source.is_live

    def test_auto_without_credentials_is_synthetic(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        source = create_data_source(Config(mode="auto"))
        assert isinstance(source, SyntheticSource)
        assert "No Sentinel Hub credentials" in caplog.text

    def test_auto_with_credentials_is_live(self, env_credentials: None) -> None:
        source = create_data_source(Config(mode="auto"))
        assert isinstance(source, SentinelHubSource)
        assert source.is_live

    def test_live_without_credentials_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="Live mode requires"):
            create_data_source(Config(mode="live"))

    def test_live_with_credentials_file(self, tmp_path: Path) -> None:
        path = tmp_path / "creds.json"
        path.write_text(
            json.dumps({"sentinel_hub": {"client_id": "a", "client_secret": "b"}}),
            encoding="utf-8",
        )
        path.chmod(0o600)
        source = create_data_source(Config(mode="live", credentials_path=path))
        assert isinstance(source, SentinelHubSource)

    def test_source_keeps_config(self) -> None:
        cfg = Config(mode="synthetic", index_size=128)
        assert create_data_source(cfg).config is cfg


# ── get_data_source ─────────────────────────────────────────────────


@pytest.mark.unit
class TestGetDataSource:
    """Verify the process-wide source is selected once."""

    def test_same_config_same_instance(self) -> None:
        first = get_data_source(Config(mode="synthetic"))
        second = get_data_source(Config(mode="synthetic"))
        assert first is second

    def test_other_config_gets_its_own_source(self, env_credentials: None) -> None:
        synthetic = get_data_source(Config(mode="synthetic"))
        live = get_data_source(Config(mode="live"))
        assert isinstance(synthetic, SyntheticSource)
        assert isinstance(live, SentinelHubSource)

    def test_cached_fallback_not_reused_for_live_config(self) -> None:
        assert isinstance(get_data_source(Config(mode="auto")), SyntheticSource)
        with pytest.raises(ConfigurationError, match="Live mode requires"):
            get_data_source(Config(mode="live"))

    def test_uses_default_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        import fieldscope.config as _cfg

        monkeypatch.setattr(_cfg, "_default_config", Config(mode="synthetic"))
        assert isinstance(get_data_source(), SyntheticSource)

    def test_reset_reselects(self, env_credentials: None) -> None:
        assert isinstance(get_data_source(Config(mode="synthetic")), SyntheticSource)
        reset_data_source()
        assert isinstance(get_data_source(Config(mode="auto")), SentinelHubSource)
