"""fieldscope: satellite field analysis for agricultural dashboards.

Example:
    >>> import fieldscope as fs
    >>>
    >>> # Analyze a bounding box; without credentials the run uses synthetic data
    >>> result = fs.analyze_bbox([13.40, 46.05, 13.42, 46.07], "2024-06-01")
    >>> result.vegetation_indices.stress_level
    >>>
    >>> # Or drive the pipeline pieces directly
    >>> tracker = fs.RunTracker(":memory:")
    >>> orchestrator = fs.AnalysisOrchestrator()
    >>> result = orchestrator.run([13.40, 46.05, 13.42, 46.07], "2024-06-01")
"""

from fieldscope.__about__ import __version__
from fieldscope._pipeline import AnalysisOrchestrator
from fieldscope._types import BoundingBox, parse_date
from fieldscope.analysis import ImageryFetcher, IndexCalculator
from fieldscope.api import AnalysisStore, Field, FieldRepository, analyze_bbox, analyze_field
from fieldscope.config import Config, ProviderCredentials, configure
from fieldscope.exceptions import (
    AuthError,
    ConfigurationError,
    FieldScopeError,
    ImageryError,
    PipelineError,
    ProviderError,
    TrackingWriteError,
)
from fieldscope.providers import (
    DataSource,
    SentinelHubSource,
    SyntheticSource,
    TokenProvider,
    get_data_source,
)
from fieldscope.results import AnalysisResult, StressLevel, VegetationIndices
from fieldscope.tracking import RunRecord, RunStatus, RunTracker, get_default_tracker

__all__ = [
    # Version
    "__version__",
    # Caller flow
    "analyze_bbox",
    "analyze_field",
    "AnalysisStore",
    "Field",
    "FieldRepository",
    # Pipeline components
    "AnalysisOrchestrator",
    "ImageryFetcher",
    "IndexCalculator",
    "RunTracker",
    "get_default_tracker",
    "TokenProvider",
    # Data sources
    "DataSource",
    "SentinelHubSource",
    "SyntheticSource",
    "get_data_source",
    # Types and results
    "AnalysisResult",
    "BoundingBox",
    "RunRecord",
    "RunStatus",
    "StressLevel",
    "VegetationIndices",
    "parse_date",
    # Configuration
    "Config",
    "ProviderCredentials",
    "configure",
    # Exceptions
    "AuthError",
    "ConfigurationError",
    "FieldScopeError",
    "ImageryError",
    "PipelineError",
    "ProviderError",
    "TrackingWriteError",
]
