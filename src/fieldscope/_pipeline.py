"""Analysis pipeline orchestration.

``AnalysisOrchestrator.run`` sequences credential acquisition, index
computation and the two imagery fetches into one ``AnalysisResult``.
Index computation and imagery degrade internally, so the only failures
that surface are invalid input and, when live data is mandatory,
credential failure.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone

from fieldscope._types import BoundingBox, parse_date
from fieldscope.analysis.imagery import ImageryFetcher
from fieldscope.analysis.indices import IndexCalculator
from fieldscope.config import Config, get_default_config
from fieldscope.exceptions import AuthError, ConfigurationError, PipelineError
from fieldscope.providers import get_data_source
from fieldscope.providers.base import DataSource
from fieldscope.results import AnalysisResult

logger = logging.getLogger(__name__)

_PROCESSING_LEVEL = "L2A"


def _parse_inputs(
    bbox: BoundingBox | Sequence[float] | str,
    acquisition_date: date | str,
) -> tuple[BoundingBox, date]:
    """Validate caller input, wrapping failures in ``PipelineError``."""
    try:
        parsed_bbox = BoundingBox.parse(bbox)
    except (TypeError, ValueError) as exc:
        raise PipelineError(
            what="Invalid bounding box",
            cause=str(exc),
            fix="Pass [minLng, minLat, maxLng, maxLat] with min < max",
        ) from exc
    try:
        day = parse_date(acquisition_date)
    except (TypeError, ValueError) as exc:
        raise PipelineError(
            what="Invalid acquisition date",
            cause=str(exc),
            fix="Pass a date or an ISO string such as '2024-06-01'",
        ) from exc
    return parsed_bbox, day


class AnalysisOrchestrator:
    """Runs the field-analysis pipeline for a bounding box and date.

    The data source is selected on the first run, so configuration
    problems surface from ``run`` as ``PipelineError`` rather than from
    the constructor.

    Args:
        config: Configuration; defaults to the active module config.
        source: Data source; defaults to the process-wide source for *config*.
        calculator: Index calculator; built on the source by default.
        fetcher: Imagery fetcher; built on the source by default.

    Example:
        >>> orchestrator = AnalysisOrchestrator(Config(mode="synthetic"))
        >>> result = orchestrator.run([13.40, 46.05, 13.42, 46.07], "2024-06-01")
        >>> result.metadata["data_source"]
        'synthetic'
    """

    def __init__(
        self,
        config: Config | None = None,
        source: DataSource | None = None,
        calculator: IndexCalculator | None = None,
        fetcher: ImageryFetcher | None = None,
    ) -> None:
        self._config = config if config is not None else get_default_config()
        self._source = source
        self._calculator = calculator
        self._fetcher = fetcher

    @property
    def source(self) -> DataSource:
        """Data source used for runs, selected on first access.

        Raises:
            ConfigurationError: If ``mode`` is ``"live"`` and no credentials
                resolve, or a credentials file is malformed.
        """
        if self._source is None:
            self._source = get_data_source(self._config)
        return self._source

    def run(
        self,
        bbox: BoundingBox | Sequence[float] | str,
        acquisition_date: date | str,
    ) -> AnalysisResult:
        """Analyze *bbox* on *acquisition_date*.

        Returns:
            The assembled ``AnalysisResult``; ``metadata["data_source"]``
            tells live and synthetic results apart.

        Raises:
            PipelineError: For invalid input, or, when ``config.mode`` is
                ``"live"``, for missing credentials, an offline source or
                credential failure.
        """
        parsed_bbox, day = _parse_inputs(bbox, acquisition_date)
        logger.info("Starting analysis for %s on %s", parsed_bbox.as_list(), day)

        source = self._select_source()
        calculator = self._calculator
        if calculator is None:
            calculator = IndexCalculator(source)
        fetcher = self._fetcher
        if fetcher is None:
            fetcher = ImageryFetcher(source, self._config)

        allow_live = source.is_live
        if allow_live:
            allow_live = self._acquire_credential(source)

        logger.info("Step 1: computing vegetation indices")
        assessment = calculator.assess(parsed_bbox, day, allow_live=allow_live)

        logger.info("Step 2: fetching true-color image and index visualization")
        with ThreadPoolExecutor(max_workers=2) as pool:
            true_color = pool.submit(
                fetcher.true_color, parsed_bbox, day, allow_live=allow_live
            )
            index_image = pool.submit(
                fetcher.index_visualization,
                parsed_bbox,
                day,
                allow_live=allow_live,
            )
            true_color_url = true_color.result()
            index_image_url = index_image.result()

        result = AnalysisResult(
            true_color_image_url=true_color_url,
            index_image_url=index_image_url,
            vegetation_indices=assessment.indices,
            acquisition_date=day,
            cloud_coverage=assessment.cloud_coverage,
            metadata={
                "data_source": assessment.data_source,
                "processing_level": _PROCESSING_LEVEL,
                "bbox": parsed_bbox.as_list(),
                "processing_time": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info(
            "Analysis finished: health score %d (%s), data source %s",
            assessment.indices.health_score,
            assessment.indices.stress_level.value,
            assessment.data_source,
        )
        return result

    def _select_source(self) -> DataSource:
        """Resolve the data source, enforcing live mode.

        Raises:
            PipelineError: If the source cannot be built, or live data is
                required and the source is not live.
        """
        try:
            source = self.source
        except ConfigurationError as exc:
            raise PipelineError(
                what="Analysis failed: could not authenticate with the imagery provider",
                cause=exc.what,
                fix=exc.fix,
            ) from exc

        if self._config.mode == "live" and not source.is_live:
            raise PipelineError(
                what="Analysis failed: live data required but the data source is offline",
                cause=f"Data source {source.name!r} does not serve live imagery",
                fix="Pass a live data source, or use mode='auto'",
            )
        return source

    def _acquire_credential(self, source: DataSource) -> bool:
        """Obtain the provider credential, retrying after ``AuthError``.

        Returns:
            ``True`` if live data may be used for this run, ``False`` if
            the run degrades to synthetic data.

        Raises:
            PipelineError: If every attempt fails and live mode is required.
        """
        attempts = self._config.auth_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                source.authenticate()
            except AuthError as exc:
                source.invalidate_credentials()
                logger.warning(
                    "Credential acquisition failed (attempt %d/%d): %s",
                    attempt,
                    attempts,
                    exc.what,
                )
                if attempt == attempts and self._config.mode == "live":
                    raise PipelineError(
                        what="Analysis failed: could not authenticate with the imagery provider",
                        cause=exc.what,
                        fix="Check Sentinel Hub credentials, or use mode='auto'",
                    ) from exc
            else:
                return True

        logger.warning("Imagery provider unavailable; using synthetic data for this run")
        return False
