"""Configuration and credential management for fieldscope.

The active ``Config`` is an immutable pydantic model. Credentials for the
imagery provider are resolved separately so a missing credential never
makes configuration itself invalid; the pipeline simply runs on
synthetic data instead.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fieldscope.exceptions import ConfigurationError

logger = logging.getLogger("fieldscope")

_CREDENTIALS_ENV_VAR = "FIELDSCOPE_CREDENTIALS"
_CLIENT_ID_ENV_VAR = "SENTINEL_HUB_CLIENT_ID"
_CLIENT_SECRET_ENV_VAR = "SENTINEL_HUB_CLIENT_SECRET"
_INSTANCE_ID_ENV_VAR = "SENTINEL_HUB_INSTANCE_ID"
_DEFAULT_CREDENTIALS_PATH = Path("~/.fieldscope/credentials.json")
_CREDENTIALS_SECTION = "sentinel_hub"

RunMode = Literal["auto", "live", "synthetic"]


class Config(BaseModel):
    """Pipeline configuration.

    Args:
        credentials_path: Explicit path to a JSON credentials file.
        mode: ``"auto"`` uses live data when credentials resolve and falls
            back to synthetic data otherwise; ``"live"`` makes credential
            failures fatal to a run; ``"synthetic"`` never calls the
            provider.
        base_url: Root URL of the Sentinel Hub services.
        runs_db: SQLite file backing the run tracker, or ``":memory:"``.
        max_cloud_coverage: Scene cloud cover limit in percent.
        true_color_size: Pixel edge of the true-color image.
        index_size: Pixel edge of the index visualization.
        sample_size: Pixel edge of the band sample used for index math.
        timeout: Connect/read timeout for provider calls in seconds.
        max_retries: Attempts for retryable provider responses.
        auth_retries: Extra credential attempts after an ``AuthError``.

    Example:
        >>> cfg = Config(mode="synthetic")
        >>> cfg.token_url
        'https://services.sentinel-hub.com/oauth/token'
    """

    model_config = ConfigDict(frozen=True, validate_default=True, extra="forbid")

    credentials_path: Path | None = None
    mode: RunMode = "auto"
    base_url: str = "https://services.sentinel-hub.com"
    runs_db: Path = Path("~/.fieldscope/runs.db")
    max_cloud_coverage: float = Field(default=30.0, ge=0.0, le=100.0)
    true_color_size: int = Field(default=1024, gt=0)
    index_size: int = Field(default=512, gt=0)
    sample_size: int = Field(default=256, gt=0)
    timeout: float = Field(default=30.0, gt=0.0)
    max_retries: int = Field(default=3, ge=1)
    auth_retries: int = Field(default=1, ge=0)

    @field_validator("credentials_path", mode="before")
    @classmethod
    def _expand_credentials_path(cls, v: str | Path | None) -> Path | None:
        if v is None:
            return None
        return Path(v).expanduser()

    @field_validator("runs_db", mode="before")
    @classmethod
    def _expand_runs_db(cls, v: str | Path) -> Path:
        if str(v) == ":memory:":
            return Path(":memory:")
        return Path(v).expanduser()

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            msg = "base_url must start with http:// or https://"
            raise ValueError(msg)
        return v.rstrip("/")

    @property
    def token_url(self) -> str:
        """OAuth2 token endpoint."""
        return f"{self.base_url}/oauth/token"

    @property
    def process_url(self) -> str:
        """Process API endpoint."""
        return f"{self.base_url}/api/v1/process"


_default_config = Config()


def configure(**kwargs: Any) -> None:
    """Replace the module-level default configuration.

    Args:
        **kwargs: Any ``Config`` field, merged over the current defaults.

    Raises:
        ValidationError: If a value fails pydantic validation.

    Example:
        >>> configure(mode="synthetic", runs_db=":memory:")
    """
    global _default_config  # noqa: PLW0603
    current = _default_config.model_dump()
    current.update(kwargs)
    _default_config = Config(**current)


def get_default_config() -> Config:
    """Return the active module-level configuration."""
    return _default_config


class ProviderCredentials(BaseModel):
    """OAuth2 client credentials for Sentinel Hub.

    Example:
        >>> creds = ProviderCredentials(client_id="id", client_secret="secret")
        >>> creds.instance_id
        ''
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str
    client_secret: str
    instance_id: str = ""


def resolve_credentials_path(explicit: Path | None = None) -> Path | None:
    """Resolve a credentials file path.

    Resolution order:
        1. *explicit* argument
        2. ``FIELDSCOPE_CREDENTIALS`` environment variable
        3. ``~/.fieldscope/credentials.json``

    Args:
        explicit: Path taken from ``Config.credentials_path``.

    Returns:
        The resolved path, or ``None`` if no file exists there.
    """
    if explicit is not None:
        path = Path(explicit).expanduser()
    elif os.environ.get(_CREDENTIALS_ENV_VAR):
        path = Path(os.environ[_CREDENTIALS_ENV_VAR]).expanduser()
    else:
        path = _DEFAULT_CREDENTIALS_PATH.expanduser()

    if not path.exists():
        return None

    _check_file_permissions(path)
    return path


def _check_file_permissions(path: Path) -> None:
    """Warn if *path* is readable by group or others."""
    if sys.platform == "win32":
        return
    try:
        mode = path.stat().st_mode
    except OSError:
        return
    if mode & 0o077:
        logger.warning(
            "Credentials file %s has overly permissive permissions (%o). "
            "Consider running: chmod 600 %s",
            path,
            mode & 0o777,
            path,
        )


def load_credentials(path: Path) -> ProviderCredentials:
    """Read Sentinel Hub client credentials from a JSON file.

    The file must contain
    ``{"sentinel_hub": {"client_id": "...", "client_secret": "..."}}``.

    Raises:
        ConfigurationError: If the file is unreadable, not valid JSON, or
            lacks the ``sentinel_hub`` section.
    """
    resolved = Path(path).expanduser()
    expected = (
        'Use the structure {"sentinel_hub": '
        '{"client_id": "...", "client_secret": "..."}}'
    )
    try:
        text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            what="Cannot read credentials file",
            cause=f"{type(exc).__name__}: {resolved}",
            fix=(
                f"Create {resolved}, or set {_CLIENT_ID_ENV_VAR} and "
                f"{_CLIENT_SECRET_ENV_VAR}"
            ),
        ) from None

    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            what="Invalid credentials file format",
            cause=f"JSON parse error in {resolved}: {exc}",
            fix=expected,
        ) from None

    section = parsed.get(_CREDENTIALS_SECTION) if isinstance(parsed, dict) else None
    if not isinstance(section, dict) or not section.get("client_id"):
        raise ConfigurationError(
            what="Invalid credentials file format",
            cause=f"No '{_CREDENTIALS_SECTION}' client credentials in {resolved}",
            fix=expected,
        )

    return ProviderCredentials(
        client_id=str(section["client_id"]),
        client_secret=str(section.get("client_secret", "")),
        instance_id=str(section.get("instance_id", "")),
    )


def resolve_credentials(config: Config) -> ProviderCredentials | None:
    """Find provider credentials for *config*, or ``None`` if there are none.

    An explicit ``credentials_path`` wins, then the
    ``SENTINEL_HUB_CLIENT_ID``/``SENTINEL_HUB_CLIENT_SECRET`` environment
    variables, then the credentials file lookup of
    ``resolve_credentials_path``.

    Raises:
        ConfigurationError: If an explicit credentials file is missing or
            any located file is malformed.
    """
    if config.credentials_path is not None:
        if not config.credentials_path.exists():
            raise ConfigurationError(
                what="Cannot read credentials file",
                cause=f"File not found: {config.credentials_path}",
                fix="Fix Config.credentials_path or remove it",
            )
        return load_credentials(config.credentials_path)

    client_id = os.environ.get(_CLIENT_ID_ENV_VAR, "")
    client_secret = os.environ.get(_CLIENT_SECRET_ENV_VAR, "")
    if client_id and client_secret:
        logger.debug("Using Sentinel Hub credentials from environment")
        return ProviderCredentials(
            client_id=client_id,
            client_secret=client_secret,
            instance_id=os.environ.get(_INSTANCE_ID_ENV_VAR, ""),
        )

    path = resolve_credentials_path()
    if path is None:
        return None
    return load_credentials(path)
