"""Shared test fixtures for the fieldscope test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from pathlib import Path
from typing import Any

import numpy as np
import pytest

import fieldscope.config as _cfg
from fieldscope._types import BoundingBox, RawData
from fieldscope.config import Config
from fieldscope.exceptions import AuthError, ImageryError
from fieldscope.providers import reset_data_source
from fieldscope.providers.base import DataSource, ImageKind
from fieldscope.tracking import RunTracker, reset_default_tracker

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Hide real credentials and reset module-level state for every test."""
    for var in (
        "SENTINEL_HUB_CLIENT_ID",
        "SENTINEL_HUB_CLIENT_SECRET",
        "SENTINEL_HUB_INSTANCE_ID",
        "FIELDSCOPE_CREDENTIALS",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(
        _cfg, "_DEFAULT_CREDENTIALS_PATH", tmp_path / "no-credentials.json"
    )
    monkeypatch.setattr(
        _cfg, "_default_config", Config(runs_db=tmp_path / "runs.db")
    )
    reset_data_source()
    reset_default_tracker()
    yield
    reset_data_source()
    reset_default_tracker()


@pytest.fixture
def test_bbox() -> BoundingBox:
    """Small field near Ljubljana."""
    return BoundingBox(13.40, 46.05, 13.42, 46.07)


@pytest.fixture
def test_date() -> date:
    return date(2024, 6, 1)


@pytest.fixture
def synthetic_config(tmp_path: Path) -> Config:
    return Config(mode="synthetic", runs_db=tmp_path / "runs.db")


@pytest.fixture
def tracker() -> RunTracker:
    """In-memory run tracker."""
    tracker = RunTracker(":memory:")
    yield tracker
    tracker.close()


def make_band_stack(
    blue: float = 0.05,
    red: float = 0.1,
    nir: float = 0.5,
    swir: float = 0.2,
    scl: float = 4.0,
    shape: tuple[int, int] = (4, 4),
) -> np.ndarray:
    """Uniform ``(B02, B04, B08, B11, SCL)`` stack."""
    return np.stack(
        [np.full(shape, value, dtype=np.float32) for value in (blue, red, nir, swir, scl)]
    )


class FakeLiveSource(DataSource):
    """Scriptable live source recording every call."""

    _name = "fake-live"
    is_live = True

    def __init__(
        self,
        config: Config,
        *,
        auth_errors: int = 0,
        band_error: Exception | None = None,
        image_error: Exception | None = None,
        bands: np.ndarray | None = None,
    ) -> None:
        super().__init__(config)
        self.auth_errors = auth_errors
        self.band_error = band_error
        self.image_error = image_error
        self.bands = bands if bands is not None else make_band_stack()
        self.auth_calls = 0
        self.invalidations = 0
        self.band_calls = 0
        self.image_calls: list[tuple[ImageKind, int]] = []

    def authenticate(self) -> str | None:
        self.auth_calls += 1
        if self.auth_calls <= self.auth_errors:
            raise AuthError(what="Sentinel Hub authentication failed", cause="HTTP 401")
        return "token"

    def invalidate_credentials(self) -> None:
        self.invalidations += 1

    def fetch_bands(self, bbox: BoundingBox, day: date) -> RawData:
        self.band_calls += 1
        if self.band_error is not None:
            raise self.band_error
        return RawData(
            data=self.bands, metadata={"bands": ["B02", "B04", "B08", "B11", "SCL"]}
        )

    def render_image(
        self, bbox: BoundingBox, day: date, kind: ImageKind, size: int
    ) -> bytes:
        self.image_calls.append((kind, size))
        if self.image_error is not None:
            raise self.image_error
        return PNG_BYTES


@pytest.fixture
def make_live_source(tmp_path: Path) -> Callable[..., FakeLiveSource]:
    """Factory for ``FakeLiveSource`` instances."""

    def _make(config: Config | None = None, **kwargs: Any) -> FakeLiveSource:
        cfg = config if config is not None else Config(runs_db=tmp_path / "runs.db")
        return FakeLiveSource(cfg, **kwargs)

    return _make


@pytest.fixture
def imagery_500() -> ImageryError:
    return ImageryError(what="Sentinel Hub process request failed", cause="HTTP 500")


@pytest.fixture
def make_bands() -> Callable[..., np.ndarray]:
    """Factory for uniform band stacks, see ``make_band_stack``."""
    return make_band_stack


@pytest.fixture
def png_bytes() -> bytes:
    """Payload every ``FakeLiveSource`` image call returns."""
    return PNG_BYTES
