"""Index computation and imagery retrieval for field analyses."""

from fieldscope.analysis.imagery import ImageryFetcher, placeholder_url
from fieldscope.analysis.indices import (
    IndexAssessment,
    IndexCalculator,
    compute_evi,
    compute_ndvi,
    compute_ndwi,
    compute_savi,
    health_score,
)

__all__ = [
    "ImageryFetcher",
    "IndexAssessment",
    "IndexCalculator",
    "compute_evi",
    "compute_ndvi",
    "compute_ndwi",
    "compute_savi",
    "health_score",
    "placeholder_url",
]
