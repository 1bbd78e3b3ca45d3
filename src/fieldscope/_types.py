"""Internal shared types for cross-boundary data contracts.

``BoundingBox`` and ``parse_date`` are re-exported from
``fieldscope.__init__``; ``RawData`` and ``TimeRange`` stay internal.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import numpy as np
import numpy.typing as npt

TimeRange = tuple[str, str]
"""ISO-8601 timestamp pair ``(from, to)`` bounding a provider query."""


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned WGS84 rectangle ``[minLng, minLat, maxLng, maxLat]``.

    Args:
        min_lng: Western edge in degrees.
        min_lat: Southern edge in degrees.
        max_lng: Eastern edge in degrees.
        max_lat: Northern edge in degrees.

    Raises:
        ValueError: If a value is not finite or an edge pair is not ordered.

    Example:
        >>> bbox = BoundingBox(13.40, 46.05, 13.42, 46.07)
        >>> bbox.as_list()
        [13.4, 46.05, 13.42, 46.07]
    """

    min_lng: float
    min_lat: float
    max_lng: float
    max_lat: float

    def __post_init__(self) -> None:
        values = self.as_list()
        if not all(math.isfinite(v) for v in values):
            msg = f"bounding box values must be finite, got {values}"
            raise ValueError(msg)
        if self.min_lng >= self.max_lng or self.min_lat >= self.max_lat:
            msg = (
                "bounding box must satisfy minLng < maxLng and minLat < maxLat, "
                f"got {values}"
            )
            raise ValueError(msg)

    def as_list(self) -> list[float]:
        """Return ``[minLng, minLat, maxLng, maxLat]``."""
        return [self.min_lng, self.min_lat, self.max_lng, self.max_lat]

    @classmethod
    def parse(cls, value: BoundingBox | Sequence[float] | str) -> BoundingBox:
        """Build a bounding box from a 4-sequence or ``"a,b,c,d"`` string.

        Raises:
            ValueError: If *value* cannot be read as four ordered numbers.
        """
        if isinstance(value, BoundingBox):
            return value
        if isinstance(value, str):
            parts: Sequence[Any] = [p.strip() for p in value.split(",")]
        else:
            parts = list(value)
        if len(parts) != 4:  # noqa: PLR2004
            msg = f"bounding box needs 4 values, got {len(parts)}"
            raise ValueError(msg)
        try:
            min_lng, min_lat, max_lng, max_lat = (float(p) for p in parts)
        except (TypeError, ValueError) as exc:
            msg = f"bounding box values must be numbers: {value!r}"
            raise ValueError(msg) from exc
        return cls(min_lng, min_lat, max_lng, max_lat)

    @classmethod
    def from_polygon(
        cls, polygon: dict[str, Any] | Sequence[Sequence[float]]
    ) -> BoundingBox:
        """Derive the bounding box of a polygon from its vertex extremes.

        Args:
            polygon: A GeoJSON ``Polygon`` mapping (the outer ring is used)
                or a ring given as ``[lng, lat]`` pairs.

        Example:
            >>> ring = [[13.40, 46.05], [13.42, 46.05], [13.42, 46.07]]
            >>> BoundingBox.from_polygon(ring).as_list()
            [13.4, 46.05, 13.42, 46.07]
        """
        if isinstance(polygon, dict):
            if polygon.get("type") != "Polygon":
                msg = f"expected a GeoJSON Polygon, got {polygon.get('type')!r}"
                raise ValueError(msg)
            rings = polygon.get("coordinates") or []
            if not rings:
                msg = "polygon has no coordinates"
                raise ValueError(msg)
            ring: Sequence[Sequence[float]] = rings[0]
        else:
            ring = polygon

        if not ring:
            msg = "polygon has no vertices"
            raise ValueError(msg)
        lngs = [float(vertex[0]) for vertex in ring]
        lats = [float(vertex[1]) for vertex in ring]
        return cls(min(lngs), min(lats), max(lngs), max(lats))


def parse_date(value: date | str) -> date:
    """Normalize a ``date``, ``datetime`` or ``YYYY-MM-DD`` string to a date.

    Raises:
        ValueError: If *value* is not a recognizable date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    msg = f"expected a date or ISO date string, got {type(value).__name__}"
    raise ValueError(msg)


def day_range(day: date) -> TimeRange:
    """Return the full UTC day covering *day* as provider timestamps."""
    iso = day.isoformat()
    return (f"{iso}T00:00:00Z", f"{iso}T23:59:59Z")


@dataclass
class RawData:
    """Band samples returned by a data source.

    Args:
        data: Band stack with shape ``(bands, height, width)``.
        metadata: Source metadata; ``bands`` lists the band order.

    Example:
        >>> raw = RawData(data=np.zeros((5, 4, 4), dtype=np.float32))
        >>> raw.metadata
        {}
    """

    data: npt.NDArray[np.floating[Any]]
    metadata: dict[str, Any] = field(default_factory=dict)
