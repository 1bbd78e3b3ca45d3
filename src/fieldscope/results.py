"""Result object model for analysis outputs."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    import pandas as pd

# ── Stress level thresholds (health score, inclusive lower bounds) ──
_EXCELLENT_THRESHOLD: int = 80
_GOOD_THRESHOLD: int = 60
_FAIR_THRESHOLD: int = 40
_POOR_THRESHOLD: int = 20

DATA_SOURCE_LIVE = "sentinel-2-l2a"
DATA_SOURCE_SYNTHETIC = "synthetic"


class StressLevel(str, Enum):
    """Ordinal field condition bucketed from the health score."""

    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    CRITICAL = "Critical"


def classify_stress(health_score: int) -> StressLevel:
    """Map a 0-100 health score to a stress level.

    Example:
        >>> classify_stress(80)
        <StressLevel.EXCELLENT: 'Excellent'>
        >>> classify_stress(79).value
        'Good'
    """
    if health_score >= _EXCELLENT_THRESHOLD:
        return StressLevel.EXCELLENT
    if health_score >= _GOOD_THRESHOLD:
        return StressLevel.GOOD
    if health_score >= _FAIR_THRESHOLD:
        return StressLevel.FAIR
    if health_score >= _POOR_THRESHOLD:
        return StressLevel.POOR
    return StressLevel.CRITICAL


class VegetationIndices(BaseModel):
    """The four vegetation indices and the composite field condition.

    Attributes:
        ndvi: Normalized difference vegetation index.
        evi: Enhanced vegetation index.
        ndwi: Normalized difference water index.
        savi: Soil-adjusted vegetation index.
        health_score: Composite score in ``[0, 100]``.
        stress_level: Label derived from ``health_score``.

    Example:
        >>> idx = VegetationIndices(
        ...     ndvi=0.6, evi=0.5, ndwi=0.0, savi=0.55,
        ...     health_score=56, stress_level="Fair",
        ... )
        >>> idx.stress_level
        <StressLevel.FAIR: 'Fair'>
    """

    model_config = ConfigDict(frozen=True)

    ndvi: float
    evi: float
    ndwi: float
    savi: float
    health_score: int = Field(ge=0, le=100)
    stress_level: StressLevel


class AnalysisResult(BaseModel):
    """Output of one pipeline run, consumed by the persistence collaborator.

    ``metadata`` always holds ``data_source``, ``processing_level``,
    ``bbox`` and ``processing_time``; ``data_source`` is the only field
    telling a live result from a synthetic one.
    """

    model_config = ConfigDict(frozen=True)

    true_color_image_url: str = Field(min_length=1)
    index_image_url: str = Field(min_length=1)
    vegetation_indices: VegetationIndices
    acquisition_date: date
    cloud_coverage: float = Field(ge=0.0, le=100.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def data_source(self) -> str:
        """Data source tag recorded in the metadata."""
        return str(self.metadata.get("data_source", ""))

    def to_record(self, field_id: Any) -> dict[str, Any]:
        """Flatten into the persisted vegetation-analysis row.

        The keys are the same whether the run used live or synthetic data.

        Example:
            >>> sorted(result.to_record(7))[:3]  # doctest: +SKIP
            ['analysis_date', 'analysis_metadata', 'evi_value']
        """
        indices = self.vegetation_indices
        return {
            "field_id": field_id,
            "analysis_date": self.acquisition_date.isoformat(),
            "ndvi_value": indices.ndvi,
            "evi_value": indices.evi,
            "ndwi_value": indices.ndwi,
            "savi_value": indices.savi,
            "stress_level": indices.stress_level.value,
            "health_score": indices.health_score,
            "cloud_coverage": self.cloud_coverage,
            "true_color_image_url": self.true_color_image_url,
            "ndvi_image_url": self.index_image_url,
            "analysis_metadata": dict(self.metadata),
        }

    def to_dataframe(self, field_id: Any = None) -> pd.DataFrame:
        """Export the persisted row as a one-row pandas DataFrame."""
        import pandas as pd

        row = self.to_record(field_id)
        row["data_source"] = self.data_source
        del row["analysis_metadata"]
        return pd.DataFrame([row])
