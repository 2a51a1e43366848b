"""
Client for the Sentinel Hub style processing API (Copernicus Data Space).

This module provides index extraction with:
- Shared bearer token with single-flight refresh (see token_cache)
- One retry with a fresh token when the processing endpoint answers 401
- Per-request TTL caching of decoded results
- PNG decoding to a mean index value
- An audit entry for every call, cache hits and retried requests included
- Nearest-acquisition-date search around a target day

A failed index raises FetchError; callers fetching several indices decide
whether the others continue. Token failures raise AuthenticationError.
"""

import base64
import datetime
import logging
import time
from typing import Any, Callable, Dict, Optional, Union

import httpx

from core.config import settings
from core.exceptions import FetchError
from enrichment.indices import INDEX_SPECS, IndexKind, TRUECOLOR, decode_index_png, has_scene, overlay_script
from enrichment.result_cache import ResultCache
from enrichment.token_cache import TokenCache
from schemas.imagery import ApiCallContext, ApiCallEntry, ApiCallLog, IndexResult, OverlayImage

logger = logging.getLogger(__name__)

BBOX_HALF_SIZE_DEGREES = 0.025
CRS_WGS84 = "http://www.opengis.net/def/crs/EPSG/0/4326"
DATA_COLLECTION = "sentinel-2-l2a"
NETWORK_CALL_COST = 1.0
AVAILABILITY_TILE_SIZE = 10


def _as_date(value: Union[str, datetime.date, datetime.datetime]) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(value)


def build_process_request(
    latitude: float,
    longitude: float,
    day: datetime.date,
    evalscript: str,
    width: int,
    height: int
) -> Dict[str, Any]:
    """Processing API body for a square tile centred on the point, limited to one day."""
    return {
        "input": {
            "bounds": {
                "bbox": [
                    longitude - BBOX_HALF_SIZE_DEGREES,
                    latitude - BBOX_HALF_SIZE_DEGREES,
                    longitude + BBOX_HALF_SIZE_DEGREES,
                    latitude + BBOX_HALF_SIZE_DEGREES,
                ],
                "properties": {"crs": CRS_WGS84},
            },
            "data": [
                {
                    "type": DATA_COLLECTION,
                    "dataFilter": {
                        "timeRange": {
                            "from": f"{day.isoformat()}T00:00:00Z",
                            "to": f"{day.isoformat()}T23:59:59Z",
                        }
                    },
                }
            ],
        },
        "output": {
            "width": width,
            "height": height,
            "responses": [
                {"identifier": "default", "format": {"type": "image/png"}}
            ],
        },
        "evalscript": evalscript,
    }


class ImageryClient:
    """
    Fetch spectral indices and overlays for a point and date.

    Attributes:
        token_cache: Bearer token holder shared by all requests of this client
        result_cache: Decoded results keyed by every request input
        process_url: Processing endpoint
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        token_cache: Optional[TokenCache] = None,
        result_cache: Optional[ResultCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        process_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.process_url = process_url or settings.COPERNICUS_PROCESS_URL
        self.timeout = timeout if timeout is not None else settings.IMAGERY_TIMEOUT

        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.timeout, transport=transport)

        self.token_cache = token_cache or TokenCache()
        self.token_cache.bind(self._http)
        self.result_cache = result_cache or ResultCache(
            ttl_seconds=settings.IMAGERY_CACHE_TTL,
            maxsize=settings.IMAGERY_CACHE_MAXSIZE
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # ------------------------------------------------------------------
    # Index values
    # ------------------------------------------------------------------

    async def fetch_index(
        self,
        latitude: float,
        longitude: float,
        date: Union[str, datetime.date],
        index_kind: Union[str, IndexKind],
        tile_width: int = 50,
        tile_height: int = 50,
        context: Optional[ApiCallContext] = None,
        call_log: Optional[ApiCallLog] = None
    ) -> IndexResult:
        """
        Fetch the mean value of one index around a point on one day.

        Raises:
            FetchError: Non-2xx response, timeout, transport error or unusable raster
            AuthenticationError: No token could be obtained
        """
        kind = IndexKind(index_kind)
        spec = INDEX_SPECS[kind]
        day = _as_date(date)
        latitude, longitude = float(latitude), float(longitude)
        cache_key = ("index", kind.value, latitude, longitude, day.isoformat(), tile_width, tile_height)

        cached = self.result_cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {kind.value} at {latitude},{longitude} on {day}")
            self._record_call(call_log, context, kind.value, latitude, longitude, day, cached=True, elapsed_ms=0)
            return cached

        error_context = {
            "index": kind.value,
            "latitude": latitude,
            "longitude": longitude,
            "date": day.isoformat(),
        }

        started = time.perf_counter()

        def record_attempt(elapsed_ms: int) -> None:
            self._record_call(call_log, context, kind.value, latitude, longitude, day, False, elapsed_ms)

        try:
            response = await self._post_process(
                build_process_request(latitude, longitude, day, spec.evalscript, tile_width, tile_height),
                record_attempt
            )
        except httpx.TimeoutException as e:
            raise FetchError(f"Timeout fetching {kind.value}", context=error_context, original_exception=e)
        except httpx.HTTPError as e:
            raise FetchError(f"Network error fetching {kind.value}: {e}", context=error_context, original_exception=e)

        elapsed_ms = _elapsed_ms(started)

        if response.status_code >= 400:
            error_context.update({
                "status_code": response.status_code,
                "response_body": response.text[:500],
            })
            raise FetchError(f"Processing API returned HTTP {response.status_code} for {kind.value}", context=error_context)

        try:
            value, pixel_count = decode_index_png(response.content, spec)
        except ValueError as e:
            error_context["image_size"] = len(response.content)
            raise FetchError(f"Could not decode {kind.value} raster", context=error_context, original_exception=e)

        result = IndexResult(
            index=kind.value,
            value=value,
            latitude=latitude,
            longitude=longitude,
            date=day,
            pixel_count=pixel_count,
        )
        self.result_cache.set(cache_key, result)

        logger.info(
            f"Fetched {kind.value}={value:.4f} at {latitude},{longitude} on {day} "
            f"({pixel_count} pixels, {elapsed_ms}ms)"
        )
        return result

    # ------------------------------------------------------------------
    # Overlays
    # ------------------------------------------------------------------

    async def fetch_overlay(
        self,
        latitude: float,
        longitude: float,
        date: Union[str, datetime.date],
        overlay: str = IndexKind.NDVI.value,
        width: int = 512,
        height: int = 512,
        context: Optional[ApiCallContext] = None,
        call_log: Optional[ApiCallLog] = None
    ) -> OverlayImage:
        """Fetch a colour-visualised PNG for an index or 'truecolor' as a base64 data URL."""
        overlay = overlay.value if isinstance(overlay, IndexKind) else overlay
        if overlay != TRUECOLOR:
            overlay = IndexKind(overlay).value
        day = _as_date(date)
        latitude, longitude = float(latitude), float(longitude)
        context = context or ApiCallContext(call_type="overlay")
        cache_key = ("overlay", overlay, latitude, longitude, day.isoformat(), width, height)

        cached = self.result_cache.get(cache_key)
        if cached is not None:
            self._record_call(call_log, context, overlay, latitude, longitude, day, cached=True, elapsed_ms=0)
            return cached

        error_context = {"overlay": overlay, "latitude": latitude, "longitude": longitude, "date": day.isoformat()}

        def record_attempt(elapsed_ms: int) -> None:
            self._record_call(call_log, context, overlay, latitude, longitude, day, False, elapsed_ms)

        try:
            response = await self._post_process(
                build_process_request(latitude, longitude, day, overlay_script(overlay), width, height),
                record_attempt
            )
        except httpx.HTTPError as e:
            raise FetchError(f"Network error fetching {overlay} overlay: {e}", context=error_context, original_exception=e)

        if response.status_code >= 400:
            error_context["status_code"] = response.status_code
            raise FetchError(f"Processing API returned HTTP {response.status_code} for {overlay} overlay", context=error_context)

        encoded = base64.b64encode(response.content).decode("ascii")
        image = OverlayImage(
            overlay=overlay,
            latitude=latitude,
            longitude=longitude,
            date=day,
            width=width,
            height=height,
            image_url=f"data:image/png;base64,{encoded}",
        )
        self.result_cache.set(cache_key, image)
        return image

    # ------------------------------------------------------------------
    # Acquisition availability
    # ------------------------------------------------------------------

    async def has_imagery_for_date(
        self,
        latitude: float,
        longitude: float,
        date: Union[str, datetime.date],
        context: Optional[ApiCallContext] = None,
        call_log: Optional[ApiCallLog] = None
    ) -> bool:
        """
        Check whether an acquisition covers the point on one day.

        Fetches a tiny true-colour tile; an all-black tile means no scene.
        Failed requests count as no imagery.
        """
        try:
            overlay = await self.fetch_overlay(
                latitude, longitude, date,
                overlay=TRUECOLOR,
                width=AVAILABILITY_TILE_SIZE,
                height=AVAILABILITY_TILE_SIZE,
                context=context,
                call_log=call_log,
            )
        except FetchError as e:
            logger.warning(f"Availability check failed for {latitude},{longitude} on {date}: {e}")
            return False
        return has_scene(base64.b64decode(overlay.image_url.split(",", 1)[1]))

    async def find_nearest_available_date(
        self,
        latitude: float,
        longitude: float,
        date: Union[str, datetime.date],
        max_offset_days: int = 15,
        context: Optional[ApiCallContext] = None,
        call_log: Optional[ApiCallLog] = None
    ) -> Optional[datetime.date]:
        """
        Closest day to `date` with an acquisition, searching up to
        max_offset_days either side. Earlier days win ties.

        Returns:
            The day found, or None when no day in the window has imagery
        """
        target = _as_date(date)
        for offset in range(max_offset_days + 1):
            candidates = [target] if offset == 0 else [
                target - datetime.timedelta(days=offset),
                target + datetime.timedelta(days=offset),
            ]
            for day in candidates:
                if await self.has_imagery_for_date(latitude, longitude, day, context, call_log):
                    if offset:
                        logger.info(f"Nearest imagery for {latitude},{longitude} is {day} ({offset} days from {target})")
                    return day

        logger.info(f"No imagery within {max_offset_days} days of {target} at {latitude},{longitude}")
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _post_process(
        self,
        body: Dict[str, Any],
        record_attempt: Callable[[int], None]
    ) -> httpx.Response:
        """
        POST to the processing endpoint, retrying once with a fresh token on 401.

        record_attempt receives the latency of every request sent, the
        rejected 401 included, so each one is audited.
        """
        response = None
        for attempt in range(2):
            token = await self.token_cache.get_token()
            started = time.perf_counter()
            try:
                response = await self._http.post(
                    self.process_url,
                    json=body,
                    headers={"Authorization": f"Bearer {token}", "Accept": "image/png"},
                    timeout=self.timeout,
                )
            finally:
                record_attempt(_elapsed_ms(started))
            if response.status_code == 401 and attempt == 0:
                logger.info("Processing API answered 401, refreshing token and retrying")
                self.token_cache.invalidate(token)
                continue
            break
        return response

    def _record_call(
        self,
        call_log: Optional[ApiCallLog],
        context: Optional[ApiCallContext],
        index_type: str,
        latitude: float,
        longitude: float,
        day: datetime.date,
        cached: bool,
        elapsed_ms: int
    ) -> None:
        if call_log is None:
            return
        context = context or ApiCallContext()
        call_log.record(ApiCallEntry(
            measurement_id=context.measurement_id,
            campaign_id=context.campaign_id,
            user_id=context.user_id,
            call_type=context.call_type,
            index_type=index_type,
            latitude=latitude,
            longitude=longitude,
            acquisition_date=day,
            cached=cached,
            response_time_ms=elapsed_ms,
            cost_credits=0.0 if cached else NETWORK_CALL_COST,
        ))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
