"""Vegetation index computation.

Band math functions are pure numpy: arrays in, arrays out. The
``IndexCalculator`` chooses between the band-math strategy (live band
samples) and the synthetic strategy, and never raises for valid input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

import numpy as np
import numpy.typing as npt
import requests

from fieldscope._types import BoundingBox, RawData
from fieldscope.exceptions import FieldScopeError, ProviderError
from fieldscope.providers.base import DataSource
from fieldscope.results import (
    DATA_SOURCE_LIVE,
    DATA_SOURCE_SYNTHETIC,
    VegetationIndices,
    classify_stress,
)

logger = logging.getLogger(__name__)

FloatArray = npt.NDArray[np.floating[Any]]

# Soil brightness correction factor for SAVI.
_SAVI_L: float = 0.5

# Health score weights.
_NDVI_WEIGHT: float = 0.40
_EVI_WEIGHT: float = 0.30
_NDWI_WEIGHT: float = 0.20
_SAVI_WEIGHT: float = 0.10
_NDWI_OFFSET: float = 0.2

# Scene Classification Layer classes treated as unusable:
# 0=NoData, 1=Saturated, 3=CloudShadow, 8=CloudMedium, 9=CloudHigh,
# 10=ThinCirrus.
_SCL_MASK_CLASSES: npt.NDArray[np.int32] = np.array([0, 1, 3, 8, 9, 10], dtype=np.int32)

_SYNTHETIC_MAX_CLOUD: float = 20.0


def _normalized_difference(a: FloatArray, b: FloatArray) -> FloatArray:
    a_f = a.astype(np.float64)
    b_f = b.astype(np.float64)
    denominator = a_f + b_f
    with np.errstate(divide="ignore", invalid="ignore"):
        result: FloatArray = np.where(denominator == 0.0, np.nan, (a_f - b_f) / denominator)
    return result


def compute_ndvi(red: FloatArray, nir: FloatArray) -> FloatArray:
    """NDVI = (NIR - Red) / (NIR + Red); NaN where the denominator is 0.

    Example:
        >>> red = np.array([[0.1, 0.2]])
        >>> nir = np.array([[0.5, 0.4]])
        >>> np.round(compute_ndvi(red, nir), 3).tolist()
        [[0.667, 0.333]]
    """
    return _normalized_difference(nir, red)


def compute_evi(blue: FloatArray, red: FloatArray, nir: FloatArray) -> FloatArray:
    """EVI = 2.5 * (NIR - Red) / (NIR + 6*Red - 7.5*Blue + 1)."""
    blue_f = blue.astype(np.float64)
    red_f = red.astype(np.float64)
    nir_f = nir.astype(np.float64)
    denominator = nir_f + 6.0 * red_f - 7.5 * blue_f + 1.0
    with np.errstate(divide="ignore", invalid="ignore"):
        evi: FloatArray = np.where(
            denominator == 0.0, np.nan, 2.5 * (nir_f - red_f) / denominator
        )
    return evi


def compute_ndwi(nir: FloatArray, swir: FloatArray) -> FloatArray:
    """NDWI (Gao) = (NIR - SWIR) / (NIR + SWIR)."""
    return _normalized_difference(nir, swir)


def compute_savi(red: FloatArray, nir: FloatArray, soil_factor: float = _SAVI_L) -> FloatArray:
    """SAVI = (NIR - Red) / (NIR + Red + L) * (1 + L)."""
    red_f = red.astype(np.float64)
    nir_f = nir.astype(np.float64)
    denominator = nir_f + red_f + soil_factor
    with np.errstate(divide="ignore", invalid="ignore"):
        savi: FloatArray = np.where(
            denominator == 0.0,
            np.nan,
            (nir_f - red_f) / denominator * (1.0 + soil_factor),
        )
    return savi


def health_score(ndvi: float, evi: float, ndwi: float, savi: float) -> int:
    """Composite 0-100 health score of the four indices.

    Example:
        >>> health_score(0.9, 0.82, 0.2, 0.86)
        77
    """
    raw = (
        _NDVI_WEIGHT * ndvi
        + _EVI_WEIGHT * evi
        + _NDWI_WEIGHT * max(0.0, ndwi + _NDWI_OFFSET)
        + _SAVI_WEIGHT * savi
    )
    return int(min(max(round(100 * raw), 0), 100))


def _build_indices(ndvi: float, evi: float, ndwi: float, savi: float) -> VegetationIndices:
    ndvi, evi, ndwi, savi = (round(v, 3) for v in (ndvi, evi, ndwi, savi))
    score = health_score(ndvi, evi, ndwi, savi)
    return VegetationIndices(
        ndvi=ndvi,
        evi=evi,
        ndwi=ndwi,
        savi=savi,
        health_score=score,
        stress_level=classify_stress(score),
    )


def synthetic_indices(rng: np.random.Generator) -> VegetationIndices:
    """Draw statistically plausible indices.

    ``ndvi`` is uniform on [0.1, 0.9]; ``evi`` and ``savi`` are
    correlated with it; ``ndwi`` is independent on [-0.2, 0.2].
    """
    ndvi = float(rng.uniform(0.1, 0.9))
    evi = ndvi * 0.8 + float(rng.uniform(0.0, 0.1))
    ndwi = float(rng.uniform(-0.2, 0.2))
    savi = ndvi * 0.9 + float(rng.uniform(0.0, 0.05))
    return _build_indices(ndvi, evi, ndwi, savi)


def _scene_mean(values: FloatArray) -> float:
    return float(np.clip(np.nanmean(values), -1.0, 1.0))


def band_math_indices(raw: RawData) -> tuple[VegetationIndices, float]:
    """Compute scene indices from live band samples.

    Args:
        raw: Band stack ordered as ``raw.metadata["bands"]``; must contain
            ``B02``, ``B04``, ``B08``, ``B11`` and ``SCL``.

    Returns:
        The indices and the cloud/no-data pixel share in percent.

    Raises:
        ProviderError: If bands are missing or every pixel is masked.
    """
    band_names: list[str] = list(raw.metadata.get("bands", []))
    try:
        blue, red, nir, swir, scl = (
            raw.data[band_names.index(name)]
            for name in ("B02", "B04", "B08", "B11", "SCL")
        )
    except (ValueError, IndexError) as exc:
        raise ProviderError(
            what="Band samples are incomplete",
            cause=f"Got bands {band_names}",
            fix="Request B02, B04, B08, B11 and SCL",
        ) from exc

    valid = ~np.isin(scl.astype(np.int32), _SCL_MASK_CLASSES)
    total = valid.size
    cloud_coverage = 100.0 * (1.0 - np.count_nonzero(valid) / total) if total else 100.0
    if not np.any(valid):
        raise ProviderError(
            what="No usable pixels in scene",
            cause=f"{cloud_coverage:.0f}% of pixels are cloud or no-data",
            fix="Choose another acquisition date",
        )

    def masked(band: FloatArray) -> FloatArray:
        return np.where(valid, band.astype(np.float64), np.nan)

    blue, red, nir, swir = masked(blue), masked(red), masked(nir), masked(swir)
    indices = _build_indices(
        _scene_mean(compute_ndvi(red, nir)),
        _scene_mean(compute_evi(blue, red, nir)),
        _scene_mean(compute_ndwi(nir, swir)),
        _scene_mean(compute_savi(red, nir)),
    )
    return indices, round(float(cloud_coverage), 2)


@dataclass(frozen=True)
class IndexAssessment:
    """Indices for one run plus the scene facts derived alongside them."""

    indices: VegetationIndices
    cloud_coverage: float
    data_source: str


class IndexCalculator:
    """Computes vegetation indices for a bounding box and date.

    Uses band math on live samples when the injected source is live and
    reachable, and the synthetic strategy otherwise. Repeated synthetic
    calls with the same arguments return different values.

    Args:
        source: Data source; ``None`` means synthetic only.
        rng: Random generator for the synthetic strategy.

    Example:
        >>> calc = IndexCalculator(rng=np.random.default_rng(7))
        >>> 0 <= calc.compute(BoundingBox(13.40, 46.05, 13.42, 46.07),
        ...                   date(2024, 6, 1)).health_score <= 100
        True
    """

    def __init__(
        self,
        source: DataSource | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._source = source
        self._rng = rng if rng is not None else np.random.default_rng()

    def compute(self, bbox: BoundingBox, day: date) -> VegetationIndices:
        """Return the vegetation indices for *bbox* on *day*."""
        return self.assess(bbox, day).indices

    def assess(
        self,
        bbox: BoundingBox,
        day: date,
        *,
        allow_live: bool = True,
    ) -> IndexAssessment:
        """Compute indices, cloud coverage and the data source tag.

        Args:
            bbox: Field extent.
            day: Acquisition date.
            allow_live: ``False`` forces the synthetic strategy.
        """
        source = self._source
        if allow_live and source is not None and source.is_live:
            try:
                raw = source.fetch_bands(bbox, day)
                indices, cloud = band_math_indices(raw)
            except (FieldScopeError, requests.RequestException) as exc:
                logger.warning(
                    "Live index computation failed for %s on %s, "
                    "using synthetic values: %s",
                    bbox.as_list(),
                    day,
                    exc,
                )
            else:
                return IndexAssessment(indices, cloud, DATA_SOURCE_LIVE)

        return IndexAssessment(
            indices=synthetic_indices(self._rng),
            cloud_coverage=round(float(self._rng.uniform(0.0, _SYNTHETIC_MAX_CLOUD)), 2),
            data_source=DATA_SOURCE_SYNTHETIC,
        )
