"""Tests for the result models and stress classification."""

from __future__ import annotations

from datetime import date
from typing import Any

import pytest
from pydantic import ValidationError

from fieldscope.results import (
    AnalysisResult,
    StressLevel,
    VegetationIndices,
    classify_stress,
)


def _indices(**overrides: Any) -> VegetationIndices:
    values: dict[str, Any] = {
        "ndvi": 0.667,
        "evi": 0.58,
        "ndwi": 0.429,
        "savi": 0.545,
        "health_score": 62,
        "stress_level": StressLevel.GOOD,
    }
    values.update(overrides)
    return VegetationIndices(**values)


def _result(data_source: str = "synthetic", **overrides: Any) -> AnalysisResult:
    values: dict[str, Any] = {
        "true_color_image_url": "/placeholder.svg?height=1024&width=1024",
        "index_image_url": "/placeholder.svg?height=512&width=512",
        "vegetation_indices": _indices(),
        "acquisition_date": date(2024, 6, 1),
        "cloud_coverage": 12.5,
        "metadata": {
            "data_source": data_source,
            "processing_level": "L2A",
            "bbox": [13.40, 46.05, 13.42, 46.07],
            "processing_time": "2024-06-01T10:00:00+00:00",
        },
    }
    values.update(overrides)
    return AnalysisResult(**values)


# ── Stress classification ──────────────────────────────────────────


class TestClassifyStress:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (100, StressLevel.EXCELLENT),
            (80, StressLevel.EXCELLENT),
            (79, StressLevel.GOOD),
            (60, StressLevel.GOOD),
            (59, StressLevel.FAIR),
            (40, StressLevel.FAIR),
            (39, StressLevel.POOR),
            (20, StressLevel.POOR),
            (19, StressLevel.CRITICAL),
            (0, StressLevel.CRITICAL),
        ],
    )
    def test_threshold_boundaries(self, score: int, expected: StressLevel) -> None:
        assert classify_stress(score) is expected

    @pytest.mark.unit
    def test_labels(self) -> None:
        assert [level.value for level in StressLevel] == [
            "Excellent",
            "Good",
            "Fair",
            "Poor",
            "Critical",
        ]


# ── VegetationIndices ──────────────────────────────────────────────


class TestVegetationIndices:
    @pytest.mark.unit
    def test_stress_level_accepts_label(self) -> None:
        assert _indices(stress_level="Poor").stress_level is StressLevel.POOR

    @pytest.mark.unit
    @pytest.mark.parametrize("score", [-1, 101])
    def test_health_score_out_of_range(self, score: int) -> None:
        with pytest.raises(ValidationError):
            _indices(health_score=score)

    @pytest.mark.unit
    def test_unknown_stress_label_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _indices(stress_level="Fine")

    @pytest.mark.unit
    def test_frozen(self) -> None:
        idx = _indices()
        with pytest.raises(ValidationError):
            idx.ndvi = 0.1  # type: ignore[misc]


# ── AnalysisResult ─────────────────────────────────────────────────


class TestAnalysisResult:
    @pytest.mark.unit
    def test_data_source_property(self) -> None:
        assert _result("sentinel-2-l2a").data_source == "sentinel-2-l2a"

    @pytest.mark.unit
    @pytest.mark.parametrize("cloud", [-0.1, 100.1])
    def test_cloud_coverage_range(self, cloud: float) -> None:
        with pytest.raises(ValidationError):
            _result(cloud_coverage=cloud)

    @pytest.mark.unit
    @pytest.mark.parametrize("field", ["true_color_image_url", "index_image_url"])
    def test_image_urls_must_be_non_empty(self, field: str) -> None:
        with pytest.raises(ValidationError):
            _result(**{field: ""})

    @pytest.mark.unit
    def test_to_record_fields(self) -> None:
        record = _result().to_record(7)
        assert record["field_id"] == 7
        assert record["analysis_date"] == "2024-06-01"
        assert record["ndvi_value"] == 0.667
        assert record["evi_value"] == 0.58
        assert record["ndwi_value"] == 0.429
        assert record["savi_value"] == 0.545
        assert record["stress_level"] == "Good"
        assert record["health_score"] == 62
        assert record["cloud_coverage"] == 12.5
        assert record["ndvi_image_url"].startswith("/placeholder.svg")
        assert record["analysis_metadata"]["processing_level"] == "L2A"

    @pytest.mark.unit
    def test_live_and_synthetic_records_share_keys(self) -> None:
        live = _result(
            "sentinel-2-l2a",
            true_color_image_url="data:image/png;base64,AAAA",
            index_image_url="data:image/png;base64,BBBB",
        )
        synthetic = _result("synthetic")
        assert live.to_record(1).keys() == synthetic.to_record(1).keys()

    @pytest.mark.unit
    def test_to_record_copies_metadata(self) -> None:
        result = _result()
        record = result.to_record(1)
        record["analysis_metadata"]["data_source"] = "tampered"
        assert result.data_source == "synthetic"

    @pytest.mark.unit
    def test_to_dataframe(self) -> None:
        df = _result().to_dataframe(field_id=3)
        assert len(df) == 1
        assert df.loc[0, "data_source"] == "synthetic"
        assert df.loc[0, "health_score"] == 62
        assert "analysis_metadata" not in df.columns
