"""Rendered field imagery: true-color composite and index visualization.

Imagery is best-effort. Any failure to render a live image is replaced
by a deterministic placeholder URI, so a run never fails on imagery.
"""

from __future__ import annotations

import base64
import logging
from datetime import date
from urllib.parse import urlencode

import requests

from fieldscope._types import BoundingBox
from fieldscope.config import Config, get_default_config
from fieldscope.exceptions import FieldScopeError
from fieldscope.providers.base import DataSource, ImageKind

logger = logging.getLogger(__name__)

_PLACEHOLDER_PATH = "/placeholder.svg"
_PLACEHOLDER_QUERIES: dict[str, str] = {
    "true_color": "satellite true color image",
    "index": "NDVI vegetation index visualization",
}


def placeholder_url(kind: ImageKind, bbox: BoundingBox, day: date, size: int) -> str:
    """Build the placeholder URI standing in for an unavailable image.

    The same arguments always produce the same URI.

    Example:
        >>> placeholder_url("index", BoundingBox(1.0, 2.0, 3.0, 4.0),
        ...                 date(2024, 6, 1), 512)
        '/placeholder.svg?height=512&width=512&kind=index&bbox=1.0%2C2.0%2C3.0%2C4.0&date=2024-06-01&query=NDVI+vegetation+index+visualization+2024-06-01'
    """
    params = {
        "height": size,
        "width": size,
        "kind": kind,
        "bbox": ",".join(str(v) for v in bbox.as_list()),
        "date": day.isoformat(),
        "query": f"{_PLACEHOLDER_QUERIES[kind]} {day.isoformat()}",
    }
    return f"{_PLACEHOLDER_PATH}?{urlencode(params)}"


def png_data_uri(payload: bytes) -> str:
    """Encode PNG bytes as a ``data:`` URI."""
    return "data:image/png;base64," + base64.b64encode(payload).decode("ascii")


class ImageryFetcher:
    """Retrieves the two visual artifacts of an analysis.

    Args:
        source: Data source; ``None`` or a non-live source yields
            placeholders without any network call.
        config: Supplies the pixel sizes; defaults to the active config.
    """

    def __init__(
        self,
        source: DataSource | None = None,
        config: Config | None = None,
    ) -> None:
        self._source = source
        if config is None:
            config = source.config if source is not None else get_default_config()
        self._config = config

    def true_color(self, bbox: BoundingBox, day: date, *, allow_live: bool = True) -> str:
        """Return a URI for the true-color composite of *bbox* on *day*."""
        return self._fetch("true_color", bbox, day, self._config.true_color_size, allow_live)

    def index_visualization(
        self, bbox: BoundingBox, day: date, *, allow_live: bool = True
    ) -> str:
        """Return a URI for the color-mapped NDVI image of *bbox* on *day*."""
        return self._fetch("index", bbox, day, self._config.index_size, allow_live)

    def _fetch(
        self,
        kind: ImageKind,
        bbox: BoundingBox,
        day: date,
        size: int,
        allow_live: bool,
    ) -> str:
        source = self._source
        if not allow_live or source is None or not source.is_live:
            return placeholder_url(kind, bbox, day, size)

        try:
            payload = source.render_image(bbox, day, kind, size)
        except (FieldScopeError, requests.RequestException) as exc:
            logger.warning(
                "%s image unavailable for %s on %s, using placeholder: %s",
                kind,
                bbox.as_list(),
                day,
                exc,
            )
            return placeholder_url(kind, bbox, day, size)

        if not payload:
            logger.warning("Empty %s image payload, using placeholder", kind)
            return placeholder_url(kind, bbox, day, size)
        return png_data_uri(payload)
