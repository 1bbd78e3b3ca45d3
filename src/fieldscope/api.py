"""Caller-side analysis flow.

Wraps one orchestrator run in its run-record lifecycle: open a
``pending`` record, run, persist, then mark it ``completed``, or mark it
``failed`` and re-raise the original exception.

Example:
    >>> import fieldscope as fs
    >>> fs.configure(mode="synthetic", runs_db=":memory:")
    >>> result = fs.analyze_bbox([13.40, 46.05, 13.42, 46.07], "2024-06-01")
    >>> result.metadata["data_source"]
    'synthetic'
    >>> fs.get_default_tracker().list_runs()[0].status.value
    'completed'
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field as PydanticField

from fieldscope._pipeline import AnalysisOrchestrator
from fieldscope._types import BoundingBox
from fieldscope.exceptions import PipelineError
from fieldscope.results import AnalysisResult
from fieldscope.tracking import RunTracker, get_default_tracker

logger = logging.getLogger(__name__)


class Field(BaseModel):
    """An agricultural field as stored by the field repository.

    Only ``coordinates`` matters to the pipeline; it is the GeoJSON
    polygon the bounding box is derived from.

    Example:
        >>> field = Field(id=1, name="North plot", coordinates={
        ...     "type": "Polygon",
        ...     "coordinates": [[[13.40, 46.05], [13.42, 46.05],
        ...                      [13.42, 46.07], [13.40, 46.07],
        ...                      [13.40, 46.05]]],
        ... })
        >>> field.bbox.as_list()
        [13.4, 46.05, 13.42, 46.07]
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int | str
    name: str = ""
    coordinates: dict[str, Any] = PydanticField(default_factory=dict)

    @property
    def bbox(self) -> BoundingBox:
        """Bounding box of the field polygon."""
        return BoundingBox.from_polygon(self.coordinates)


class FieldRepository(Protocol):
    """Read access to stored fields."""

    def get_field_by_id(self, field_id: Any) -> Field | None: ...


class AnalysisStore(Protocol):
    """Write access for finished analyses."""

    def persist_analysis_result(self, field_id: Any, result: AnalysisResult) -> None: ...


def _tracked_run(
    field_id: Any,
    bbox: BoundingBox | Sequence[float] | str,
    acquisition_date: date | str,
    tracker: RunTracker,
    orchestrator: AnalysisOrchestrator,
    store: AnalysisStore | None,
) -> AnalysisResult:
    """Run the pipeline inside exactly one pending-to-terminal run record."""
    try:
        tracked_bbox = BoundingBox.parse(bbox)
    except (TypeError, ValueError) as exc:
        raise PipelineError(
            what="Invalid bounding box",
            cause=str(exc),
            fix="Pass [minLng, minLat, maxLng, maxLat] with min < max",
        ) from exc

    try:
        run = tracker.begin(field_id, tracked_bbox, acquisition_date)
    except (TypeError, ValueError) as exc:
        raise PipelineError(
            what="Invalid acquisition date",
            cause=str(exc),
            fix="Pass a date or an ISO string such as '2024-06-01'",
        ) from exc

    try:
        result = orchestrator.run(tracked_bbox, acquisition_date)
        if store is not None:
            store.persist_analysis_result(field_id, result)
    except Exception as exc:
        logger.error("Analysis run %s failed: %s", run.id, exc)
        tracker.fail(run.id, str(exc))
        raise

    tracker.complete(run.id)
    return result


def analyze_bbox(
    bbox: BoundingBox | Sequence[float] | str,
    acquisition_date: date | str,
    *,
    field_id: Any = None,
    tracker: RunTracker | None = None,
    orchestrator: AnalysisOrchestrator | None = None,
) -> AnalysisResult:
    """Analyze a bounding box with run tracking but no persistence.

    Raises:
        PipelineError: If the run aborts.
    """
    return _tracked_run(
        field_id,
        bbox,
        acquisition_date,
        tracker if tracker is not None else get_default_tracker(),
        orchestrator if orchestrator is not None else AnalysisOrchestrator(),
        None,
    )


def analyze_field(
    field_id: Any,
    acquisition_date: date | str,
    *,
    fields: FieldRepository,
    store: AnalysisStore,
    tracker: RunTracker | None = None,
    orchestrator: AnalysisOrchestrator | None = None,
) -> AnalysisResult:
    """Analyze a stored field and persist the result as its latest analysis.

    Args:
        field_id: Identifier understood by *fields* and *store*.
        acquisition_date: Imagery date.
        fields: Field repository used to look up the polygon.
        store: Receives the result after a successful run.
        tracker: Run tracker; defaults to the process-wide tracker on
            ``Config.runs_db``.
        orchestrator: Pipeline; defaults to one on the active config.

    Raises:
        PipelineError: If the field does not exist, its polygon is unusable,
            or the run aborts. Errors raised by *store* propagate unchanged
            after the run is marked failed.
    """
    field = fields.get_field_by_id(field_id)
    if field is None:
        raise PipelineError(
            what=f"Field {field_id!r} not found",
            fix="Check the field id",
        )
    try:
        bbox = field.bbox
    except ValueError as exc:
        raise PipelineError(
            what=f"Field {field_id!r} has an unusable boundary",
            cause=str(exc),
            fix="Redraw the field boundary",
        ) from exc

    return _tracked_run(
        field_id,
        bbox,
        acquisition_date,
        tracker if tracker is not None else get_default_tracker(),
        orchestrator if orchestrator is not None else AnalysisOrchestrator(),
        store,
    )
