"""Offline data source used when no provider is configured or reachable."""

from __future__ import annotations

from datetime import date

from fieldscope._types import BoundingBox, RawData
from fieldscope.exceptions import ImageryError, ProviderError
from fieldscope.providers.base import DataSource, ImageKind


class SyntheticSource(DataSource):
    """Data source that never touches the network.

    The index calculator and the imagery fetcher recognize it by
    ``is_live = False`` and produce synthetic indices and placeholder
    images instead of calling it.

    Example:
        >>> from fieldscope.config import Config
        >>> SyntheticSource(Config()).authenticate() is None
        True
    """

    _name: str = "synthetic"
    is_live: bool = False

    def authenticate(self) -> str | None:
        return None

    def fetch_bands(self, bbox: BoundingBox, day: date) -> RawData:
        raise ProviderError(
            what="Synthetic source has no band data",
            cause="No imagery provider is configured",
            fix="Configure Sentinel Hub credentials for live data",
        )

    def render_image(
        self,
        bbox: BoundingBox,
        day: date,
        kind: ImageKind,
        size: int,
    ) -> bytes:
        raise ImageryError(
            what="Synthetic source cannot render imagery",
            cause="No imagery provider is configured",
            fix="Configure Sentinel Hub credentials for live imagery",
        )
