"""Tests for configuration and credential resolution."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

import fieldscope.config as _cfg
from fieldscope.config import (
    Config,
    ProviderCredentials,
    configure,
    get_default_config,
    load_credentials,
    resolve_credentials,
    resolve_credentials_path,
)
from fieldscope.exceptions import ConfigurationError


def _write_credentials(path: Path, payload: object, mode: int = 0o600) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    os.chmod(path, mode)
    return path


_VALID = {"sentinel_hub": {"client_id": "abc", "client_secret": "s3cret"}}


# ── Config model ───────────────────────────────────────────────────


class TestConfig:
    @pytest.mark.unit
    def test_defaults(self) -> None:
        cfg = Config()
        assert cfg.mode == "auto"
        assert cfg.true_color_size == 1024
        assert cfg.index_size == 512
        assert cfg.sample_size == 256
        assert cfg.max_cloud_coverage == 30.0
        assert cfg.auth_retries == 1

    @pytest.mark.unit
    def test_endpoints(self) -> None:
        cfg = Config(base_url="https://sh.example.com/")
        assert cfg.token_url == "https://sh.example.com/oauth/token"
        assert cfg.process_url == "https://sh.example.com/api/v1/process"

    @pytest.mark.unit
    def test_rejects_non_http_base_url(self) -> None:
        with pytest.raises(ValidationError):
            Config(base_url="ftp://sh.example.com")

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"mode": "offline"},
            {"max_cloud_coverage": 101},
            {"index_size": 0},
            {"max_retries": 0},
            {"auth_retries": -1},
            {"unknown_option": True},
        ],
    )
    def test_rejects_invalid_values(self, kwargs: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            Config(**kwargs)

    @pytest.mark.unit
    def test_memory_runs_db_preserved(self) -> None:
        assert str(Config(runs_db=":memory:").runs_db) == ":memory:"

    @pytest.mark.unit
    def test_paths_expand_user(self) -> None:
        cfg = Config(credentials_path="~/creds.json")
        assert cfg.credentials_path is not None
        assert "~" not in str(cfg.credentials_path)

    @pytest.mark.unit
    def test_frozen(self) -> None:
        cfg = Config()
        with pytest.raises(ValidationError):
            cfg.mode = "live"  # type: ignore[misc]


class TestConfigure:
    @pytest.mark.unit
    def test_merges_over_current_defaults(self) -> None:
        configure(mode="synthetic")
        configure(index_size=256)
        cfg = get_default_config()
        assert cfg.mode == "synthetic"
        assert cfg.index_size == 256

    @pytest.mark.unit
    def test_invalid_value_keeps_previous_config(self) -> None:
        before = get_default_config()
        with pytest.raises(ValidationError):
            configure(mode="offline")
        assert get_default_config() is before


# ── Credentials files ──────────────────────────────────────────────


class TestLoadCredentials:
    @pytest.mark.unit
    def test_valid_file(self, tmp_path: Path) -> None:
        path = _write_credentials(
            tmp_path / "c.json",
            {"sentinel_hub": {"client_id": "abc", "client_secret": "s", "instance_id": "i"}},
        )
        creds = load_credentials(path)
        assert creds == ProviderCredentials(
            client_id="abc", client_secret="s", instance_id="i"
        )

    @pytest.mark.unit
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_credentials(tmp_path / "absent.json")

    @pytest.mark.unit
    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "c.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid credentials file format"):
            load_credentials(path)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "payload",
        [{"other": {}}, {"sentinel_hub": {"client_secret": "s"}}, ["list"]],
    )
    def test_missing_section(self, tmp_path: Path, payload: object) -> None:
        path = _write_credentials(tmp_path / "c.json", payload)
        with pytest.raises(ConfigurationError, match="sentinel_hub"):
            load_credentials(path)


class TestResolveCredentialsPath:
    @pytest.mark.unit
    def test_explicit_path(self, tmp_path: Path) -> None:
        path = _write_credentials(tmp_path / "c.json", _VALID)
        assert resolve_credentials_path(path) == path

    @pytest.mark.unit
    def test_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write_credentials(tmp_path / "env.json", _VALID)
        monkeypatch.setenv("FIELDSCOPE_CREDENTIALS", str(path))
        assert resolve_credentials_path() == path

    @pytest.mark.unit
    def test_default_location(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = _write_credentials(tmp_path / "default.json", _VALID)
        monkeypatch.setattr(_cfg, "_DEFAULT_CREDENTIALS_PATH", path)
        assert resolve_credentials_path() == path

    @pytest.mark.unit
    def test_none_when_missing(self) -> None:
        assert resolve_credentials_path() is None

    @pytest.mark.unit
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_warns_on_permissive_file(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = _write_credentials(tmp_path / "c.json", _VALID, mode=0o644)
        with caplog.at_level(logging.WARNING, logger="fieldscope"):
            resolve_credentials_path(path)
        assert "chmod 600" in caplog.text


class TestResolveCredentials:
    @pytest.mark.unit
    def test_nothing_configured(self) -> None:
        assert resolve_credentials(Config()) is None

    @pytest.mark.unit
    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SENTINEL_HUB_CLIENT_ID", "env-id")
        monkeypatch.setenv("SENTINEL_HUB_CLIENT_SECRET", "env-secret")
        creds = resolve_credentials(Config())
        assert creds is not None
        assert creds.client_id == "env-id"
        assert creds.client_secret == "env-secret"

    @pytest.mark.unit
    def test_incomplete_environment_is_ignored(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SENTINEL_HUB_CLIENT_ID", "env-id")
        assert resolve_credentials(Config()) is None

    @pytest.mark.unit
    def test_explicit_path_wins_over_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = _write_credentials(tmp_path / "c.json", _VALID)
        monkeypatch.setenv("SENTINEL_HUB_CLIENT_ID", "env-id")
        monkeypatch.setenv("SENTINEL_HUB_CLIENT_SECRET", "env-secret")
        creds = resolve_credentials(Config(credentials_path=path))
        assert creds is not None
        assert creds.client_id == "abc"

    @pytest.mark.unit
    def test_missing_explicit_path_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="credentials_path"):
            resolve_credentials(Config(credentials_path=tmp_path / "absent.json"))

    @pytest.mark.unit
    def test_falls_back_to_default_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = _write_credentials(tmp_path / "default.json", _VALID)
        monkeypatch.setattr(_cfg, "_DEFAULT_CREDENTIALS_PATH", path)
        creds = resolve_credentials(Config())
        assert creds is not None
        assert creds.client_secret == "s3cret"
