"""Data source contract shared by the live provider and the fallback.

A single ``DataSource`` is selected once per process (see
``fieldscope.providers.get_data_source``) and injected into the index
calculator and the imagery fetcher, so the live-or-synthetic decision is
made in one place.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Literal

from fieldscope._types import BoundingBox, RawData
from fieldscope.config import Config

ImageKind = Literal["true_color", "index"]


class DataSource(ABC):
    """Abstract imagery/band data source.

    Subclasses set ``_name`` and ``is_live``. Non-live sources are never
    asked for bands or images by the pipeline components.

    Args:
        config: Frozen configuration snapshot.
    """

    _name: str = ""
    is_live: bool = False

    def __init__(self, config: Config) -> None:
        self._config = config

    @property
    def name(self) -> str:
        """Source identifier used in logs."""
        return self._name

    @property
    def config(self) -> Config:
        """Configuration the source was created with."""
        return self._config

    @abstractmethod
    def authenticate(self) -> str | None:
        """Obtain (or reuse) the bearer credential.

        Returns:
            The credential, or ``None`` for sources that need none.

        Raises:
            AuthError: If the provider rejects the credential exchange.
        """
        ...

    def invalidate_credentials(self) -> None:  # noqa: B027
        """Drop any cached credential so the next call re-authenticates."""

    @abstractmethod
    def fetch_bands(self, bbox: BoundingBox, day: date) -> RawData:
        """Fetch per-pixel band samples for *bbox* on *day*.

        Returns:
            ``RawData`` with a ``(bands, height, width)`` array and a
            ``bands`` list in its metadata.

        Raises:
            ProviderError: If the samples cannot be obtained.
        """
        ...

    @abstractmethod
    def render_image(
        self,
        bbox: BoundingBox,
        day: date,
        kind: ImageKind,
        size: int,
    ) -> bytes:
        """Render a PNG of *kind* for *bbox* on *day*.

        Raises:
            ImageryError: If the provider answers with a non-success status.
        """
        ...
