"""Data source selection.

``get_data_source()`` picks the live Sentinel Hub source or the synthetic
fallback once per configuration, based on ``Config.mode`` and whether
credentials can be resolved.
"""

from __future__ import annotations

import logging
import threading

from fieldscope.config import Config, get_default_config, resolve_credentials
from fieldscope.exceptions import ConfigurationError
from fieldscope.providers.base import DataSource, ImageKind
from fieldscope.providers.sentinel_hub import SentinelHubSource, TokenProvider
from fieldscope.providers.synthetic import SyntheticSource

logger = logging.getLogger(__name__)

_active_sources: dict[Config, DataSource] = {}
_source_lock = threading.Lock()


def create_data_source(config: Config) -> DataSource:
    """Build the data source *config* calls for.

    Raises:
        ConfigurationError: If ``mode`` is ``"live"`` and no credentials
            can be resolved, or a credentials file is malformed.
    """
    if config.mode == "synthetic":
        logger.info("Synthetic mode configured; provider calls disabled")
        return SyntheticSource(config)

    credentials = resolve_credentials(config)
    if credentials is None:
        if config.mode == "live":
            raise ConfigurationError(
                what="Live mode requires Sentinel Hub credentials",
                cause="No credentials file or environment variables found",
                fix=(
                    "Set SENTINEL_HUB_CLIENT_ID and SENTINEL_HUB_CLIENT_SECRET, "
                    "or use mode='auto'"
                ),
            )
        logger.warning("No Sentinel Hub credentials found; using synthetic data")
        return SyntheticSource(config)

    return SentinelHubSource(config, credentials)


def get_data_source(config: Config | None = None) -> DataSource:
    """Return the process-wide data source for *config*, creating it on first use.

    Sources are cached per configuration, so every caller with the same
    ``Config`` shares one source (and its cached token), while a caller
    passing a different ``Config`` gets the source that config calls for.

    Raises:
        ConfigurationError: As for ``create_data_source``.
    """
    if config is None:
        config = get_default_config()
    source = _active_sources.get(config)
    if source is not None:
        return source
    with _source_lock:
        source = _active_sources.get(config)
        if source is None:
            source = create_data_source(config)
            _active_sources[config] = source
        return source


def reset_data_source() -> None:
    """Forget the cached data sources so the next call re-selects."""
    with _source_lock:
        _active_sources.clear()


__all__ = [
    "DataSource",
    "ImageKind",
    "SentinelHubSource",
    "SyntheticSource",
    "TokenProvider",
    "create_data_source",
    "get_data_source",
    "reset_data_source",
]
