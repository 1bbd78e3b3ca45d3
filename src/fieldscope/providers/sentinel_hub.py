"""Sentinel-2 L2A access through the Sentinel Hub Process API."""

from __future__ import annotations

import logging
import random
import threading
import time
from datetime import date
from typing import Any

import numpy as np
import numpy.typing as npt
import requests

from fieldscope._types import BoundingBox, RawData, day_range
from fieldscope.config import Config, ProviderCredentials
from fieldscope.exceptions import AuthError, ImageryError, ProviderError
from fieldscope.providers.base import DataSource, ImageKind

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Process API constants
# ---------------------------------------------------------------------------

_CRS_WGS84 = "http://www.opengis.net/def/crs/EPSG/0/4326"
_COLLECTION = "sentinel-2-l2a"
_INITIAL_BACKOFF = 1.0  # seconds
_MAX_BACKOFF = 30.0  # seconds
_TOKEN_EXPIRY_MARGIN = 30.0  # seconds
_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
_SENTINEL_HUB_STATUS_URL = "https://status.sentinel-hub.com/"

BAND_ORDER: list[str] = ["B02", "B04", "B08", "B11", "SCL"]
"""Band order of the sample stack returned by ``fetch_bands``."""

_BANDS_EVALSCRIPT = """//VERSION=3
function setup() {
  return {
    input: [{ bands: ["B02", "B04", "B08", "B11", "SCL"] }],
    output: { bands: 5, sampleType: "FLOAT32" }
  };
}

function evaluatePixel(sample) {
  return [sample.B02, sample.B04, sample.B08, sample.B11, sample.SCL];
}
"""

_TRUE_COLOR_EVALSCRIPT = """//VERSION=3
function setup() {
  return {
    input: ["B02", "B03", "B04"],
    output: { bands: 3 }
  };
}

function evaluatePixel(sample) {
  return [
    Math.min(1, sample.B04 * 2.5),
    Math.min(1, sample.B03 * 2.5),
    Math.min(1, sample.B02 * 2.5)
  ];
}
"""

_INDEX_EVALSCRIPT = """//VERSION=3
function setup() {
  return {
    input: ["B04", "B08"],
    output: { bands: 3 }
  };
}

function evaluatePixel(sample) {
  let ndvi = (sample.B08 - sample.B04) / (sample.B08 + sample.B04);
  if (ndvi < 0.2) return [0.8, 0.8, 0.8];
  if (ndvi < 0.4) return [1, 1, 0];
  if (ndvi < 0.6) return [0.5, 1, 0];
  if (ndvi < 0.8) return [0, 1, 0];
  return [0, 0.5, 0];
}
"""

_IMAGE_EVALSCRIPTS: dict[str, str] = {
    "true_color": _TRUE_COLOR_EVALSCRIPT,
    "index": _INDEX_EVALSCRIPT,
}


class TokenProvider:
    """Obtains and caches the Sentinel Hub bearer token.

    The token is fetched with an OAuth2 client-credentials grant and
    reused until ``invalidate()`` is called or the ``expires_in`` reported
    by the provider has elapsed. Concurrent first callers are serialized
    on a lock, so only one exchange is made; reads of a populated cache
    take no lock.

    Args:
        credentials: OAuth2 client id and secret.
        config: Configuration providing ``token_url`` and ``timeout``.
        session: Optional HTTP session to share with the caller.

    Example:
        >>> tokens = TokenProvider(ProviderCredentials(
        ...     client_id="id", client_secret="secret"), Config())
        >>> tokens.get_token()  # doctest: +SKIP
        'eyJhbGciOi...'
    """

    def __init__(
        self,
        credentials: ProviderCredentials,
        config: Config,
        session: requests.Session | None = None,
    ) -> None:
        self._credentials = credentials
        self._config = config
        self._session = session if session is not None else requests.Session()
        self._cached: tuple[str, float | None] | None = None
        self._lock = threading.Lock()

    @property
    def has_token(self) -> bool:
        """Whether a non-expired token is cached."""
        return self._valid_token() is not None

    def _valid_token(self) -> str | None:
        cached = self._cached
        if cached is None:
            return None
        token, expires_at = cached
        if expires_at is not None and time.monotonic() >= expires_at:
            return None
        return token

    def get_token(self) -> str:
        """Return the cached token, exchanging credentials on a miss.

        Raises:
            AuthError: If the exchange fails or the response lacks a token.
        """
        token = self._valid_token()
        if token is not None:
            return token

        with self._lock:
            token = self._valid_token()
            if token is not None:
                return token
            token, expires_in = self._exchange()
            expires_at = None
            if expires_in is not None:
                expires_at = time.monotonic() + max(
                    expires_in - _TOKEN_EXPIRY_MARGIN, 0.0
                )
            self._cached = (token, expires_at)
            return token

    def invalidate(self) -> None:
        """Forget the cached token."""
        with self._lock:
            self._cached = None
        logger.debug("Sentinel Hub token invalidated")

    def _exchange(self) -> tuple[str, float | None]:
        try:
            resp = self._session.post(
                self._config.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._credentials.client_id,
                    "client_secret": self._credentials.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._config.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(
                what="Cannot reach Sentinel Hub authentication service",
                cause=str(exc),
                fix="Check internet connection and " + _SENTINEL_HUB_STATUS_URL,
            ) from exc

        if resp.status_code != 200:  # noqa: PLR2004
            raise AuthError(
                what="Sentinel Hub authentication failed",
                cause=f"HTTP {resp.status_code}: invalid client id or secret",
                fix=(
                    "Verify the OAuth client in the Sentinel Hub dashboard and "
                    "update SENTINEL_HUB_CLIENT_ID/SENTINEL_HUB_CLIENT_SECRET"
                ),
            )

        try:
            body = resp.json()
            token: str = body["access_token"]
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthError(
                what="Sentinel Hub returned unexpected auth response",
                cause="Missing access_token in response",
                fix="Try again; if persistent, check " + _SENTINEL_HUB_STATUS_URL,
            ) from exc

        expires_in: float | None = None
        raw_expiry = body.get("expires_in")
        if raw_expiry is not None:
            try:
                expires_in = float(raw_expiry)
            except (TypeError, ValueError):
                expires_in = None

        logger.debug("Sentinel Hub authentication successful")
        return token, expires_in


class SentinelHubSource(DataSource):
    """Live Sentinel-2 L2A source backed by the Sentinel Hub Process API.

    Args:
        config: Configuration snapshot (endpoints, sizes, retries).
        credentials: OAuth2 client credentials.
        tokens: Optional token provider to share between sources.
    """

    _name: str = "sentinel-hub"
    is_live: bool = True

    def __init__(
        self,
        config: Config,
        credentials: ProviderCredentials,
        tokens: TokenProvider | None = None,
    ) -> None:
        super().__init__(config)
        self._session: requests.Session = requests.Session()
        self.tokens = (
            tokens
            if tokens is not None
            else TokenProvider(credentials, config, session=self._session)
        )

    def authenticate(self) -> str | None:
        return self.tokens.get_token()

    def invalidate_credentials(self) -> None:
        self.tokens.invalidate()

    def _build_request(
        self,
        bbox: BoundingBox,
        day: date,
        evalscript: str,
        size: int,
        mime_type: str,
    ) -> dict[str, Any]:
        """Build a Process API request body for one output."""
        time_from, time_to = day_range(day)
        return {
            "input": {
                "bounds": {
                    "bbox": bbox.as_list(),
                    "properties": {"crs": _CRS_WGS84},
                },
                "data": [
                    {
                        "type": _COLLECTION,
                        "dataFilter": {
                            "timeRange": {"from": time_from, "to": time_to},
                            "maxCloudCoverage": self._config.max_cloud_coverage,
                        },
                    }
                ],
            },
            "output": {
                "width": size,
                "height": size,
                "responses": [
                    {"identifier": "default", "format": {"type": mime_type}},
                ],
            },
            "evalscript": evalscript,
        }

    @staticmethod
    def _compute_backoff(attempt: int) -> float:
        """Exponential backoff with full jitter for zero-based *attempt*."""
        backoff = min(_MAX_BACKOFF, _INITIAL_BACKOFF * (2**attempt))
        return random.uniform(0, backoff)  # noqa: S311

    @staticmethod
    def _parse_retry_after(resp: requests.Response) -> float | None:
        raw = resp.headers.get("Retry-After")
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None

    def _process(
        self,
        body: dict[str, Any],
        mime_type: str,
        error_cls: type[ProviderError],
    ) -> bytes:
        """POST *body* to the Process API and return the payload bytes.

        Retries transient statuses and network errors up to
        ``config.max_retries`` times.

        Raises:
            AuthError: On HTTP 401; the cached token is invalidated first.
            ProviderError: *error_cls* for any other failure.
        """
        max_retries = self._config.max_retries
        last_status = 0
        last_exc: requests.RequestException | None = None

        for attempt in range(max_retries):
            token = self.tokens.get_token()
            try:
                resp = self._session.post(
                    self._config.process_url,
                    json=body,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Accept": mime_type,
                    },
                    timeout=self._config.timeout,
                )
            except requests.RequestException as exc:
                last_exc = exc
                if attempt < max_retries - 1:
                    logger.error(
                        "Sentinel Hub request failed (attempt %d/%d), retrying...",
                        attempt + 1,
                        max_retries,
                    )
                    time.sleep(self._compute_backoff(attempt))
                continue

            if resp.status_code == 200:  # noqa: PLR2004
                return resp.content

            if resp.status_code == 401:  # noqa: PLR2004
                self.tokens.invalidate()
                raise AuthError(
                    what="Sentinel Hub rejected the bearer token",
                    cause="HTTP 401",
                    fix="The token is refreshed on the next request; retry",
                )

            last_status = resp.status_code
            last_exc = None
            if resp.status_code not in _RETRYABLE_STATUS_CODES:
                raise error_cls(
                    what="Sentinel Hub process request failed",
                    cause=f"HTTP {resp.status_code}",
                    fix="Check the bounding box and date; see "
                    + _SENTINEL_HUB_STATUS_URL,
                )

            if attempt < max_retries - 1:
                wait = None
                if resp.status_code == 429:  # noqa: PLR2004
                    wait = self._parse_retry_after(resp)
                if wait is None:
                    wait = self._compute_backoff(attempt)
                logger.error(
                    "Sentinel Hub request failed (attempt %d/%d), HTTP %d, retrying...",
                    attempt + 1,
                    max_retries,
                    resp.status_code,
                )
                time.sleep(wait)

        if last_exc is not None:
            raise error_cls(
                what="Sentinel Hub process request failed",
                cause=str(last_exc),
                fix="Check internet connection and try again",
            ) from last_exc

        raise error_cls(
            what="Sentinel Hub process request failed",
            cause=f"HTTP {last_status} after {max_retries} attempts",
            fix="Try again later; see " + _SENTINEL_HUB_STATUS_URL,
        )

    def fetch_bands(self, bbox: BoundingBox, day: date) -> RawData:
        size = self._config.sample_size
        body = self._build_request(
            bbox, day, _BANDS_EVALSCRIPT, size, "image/tiff"
        )
        logger.info("Requesting Sentinel-2 band samples for %s on %s", bbox, day)
        payload = self._process(body, "image/tiff", ProviderError)
        array = self._decode_bands(payload)
        if array.ndim != 3 or array.shape[0] != len(BAND_ORDER):  # noqa: PLR2004
            raise ProviderError(
                what="Sentinel Hub returned unexpected band layout",
                cause=f"Expected {len(BAND_ORDER)} bands, got shape {array.shape}",
                fix="Report this issue; the evalscript output may have changed",
            )
        return RawData(
            data=array,
            metadata={
                "bands": list(BAND_ORDER),
                "bbox": bbox.as_list(),
                "date": day.isoformat(),
                "size": size,
            },
        )

    @staticmethod
    def _decode_bands(payload: bytes) -> npt.NDArray[np.floating[Any]]:
        """Read a multi-band FLOAT32 GeoTIFF payload into a numpy stack."""
        from rasterio.errors import RasterioError  # noqa: PLC0415
        from rasterio.io import MemoryFile  # noqa: PLC0415

        try:
            with MemoryFile(payload) as memfile, memfile.open() as dataset:
                array: npt.NDArray[np.floating[Any]] = dataset.read().astype(
                    np.float32
                )
        except RasterioError as exc:
            raise ProviderError(
                what="Sentinel Hub returned an unreadable band payload",
                cause=str(exc),
                fix="Try again; the response may have been truncated",
            ) from exc
        return array

    def render_image(
        self,
        bbox: BoundingBox,
        day: date,
        kind: ImageKind,
        size: int,
    ) -> bytes:
        evalscript = _IMAGE_EVALSCRIPTS[kind]
        body = self._build_request(bbox, day, evalscript, size, "image/png")
        logger.info("Requesting %s image (%dpx) for %s on %s", kind, size, bbox, day)
        return self._process(body, "image/png", ImageryError)
