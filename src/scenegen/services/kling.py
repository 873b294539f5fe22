"""Kling image-to-video API client."""

import asyncio
import logging
import math
import random
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import config
from ..errors import VideoServiceError
from ..models import Completed, Failed, JobState, Pending, Processing
from .offline import OfflineVideoService, is_offline_job
from .video import VideoRequest, VideoService

logger = logging.getLogger(__name__)


class KlingVideoService(VideoService):
    """Client for Kling AI image-to-video generation.

    This client handles:
    - Submitting image-to-video jobs
    - Reading job status and translating it into a job state
    - Retrying submission on rate limits and gateway errors

    Job ids with the offline prefix are answered locally, so jobs created
    while running without credentials can still be polled.
    """

    DEFAULT_TIMEOUT = 30.0
    DEFAULT_STATUS_TIMEOUT = 15.0
    DEFAULT_CFG_SCALE = 5
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_DELAY = 2.0
    RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        cfg_scale: int = DEFAULT_CFG_SCALE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        offline: Optional[OfflineVideoService] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the Kling client.

        Args:
            api_key: Kling API key. Defaults to KLING_API_KEY env var.
            api_base: API base URL. Defaults to KLING_API_BASE env var.
            cfg_scale: Creativity vs. faithfulness (0-10).
            max_retries: Maximum retry attempts for transient submit errors.
            retry_delay: Base delay between retries (exponential backoff).
            transport: Optional httpx transport, used by tests.
            offline: Simulator answering offline job ids.
            sleep: Awaitable sleep used between retries.
        """
        self._api_key = api_key or config.kling_api_key
        if not self._api_key:
            raise ValueError("Kling API key not provided. Set KLING_API_KEY env var.")

        self._api_base = (api_base or config.kling_api_base).rstrip("/")
        self._cfg_scale = cfg_scale
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._transport = transport
        self._offline = offline or OfflineVideoService(threshold=config.offline_threshold)
        self._sleep = sleep

    @property
    def api_base(self) -> str:
        """Return the API base URL."""
        return self._api_base

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def submit(self, request: VideoRequest) -> str:
        payload = {
            "image_url": request.image_url,
            "prompt": request.motion_prompt,
            "duration": request.duration,
            "aspect_ratio": request.aspect_ratio,
            "cfg_scale": self._cfg_scale,
        }

        data = await self._request_with_backoff(
            "POST", f"{self._api_base}/video/generate", json=payload
        )
        job_id = data.get("task_id") or data.get("id")
        if not job_id:
            raise VideoServiceError(f"Kling submit returned no task id: {data}")
        return str(job_id)

    async def get_status(self, job_id: str) -> JobState:
        if is_offline_job(job_id):
            return await self._offline.get_status(job_id)

        try:
            async with httpx.AsyncClient(
                timeout=self.DEFAULT_STATUS_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.get(
                    f"{self._api_base}/video/status/{job_id}",
                    headers=self._headers(),
                )
        except httpx.TransportError as e:
            raise VideoServiceError(f"Kling status check failed: {e}", job_id=job_id) from e

        if response.status_code != 200:
            raise VideoServiceError(
                _error_message(response, "Failed to check video status"),
                job_id=job_id,
                status_code=response.status_code,
            )

        return parse_job_state(response.json(), job_id)

    async def _request_with_backoff(self, method: str, url: str, **kwargs: Any) -> dict:
        """Send a request, retrying rate limits, gateway errors and transport errors."""
        for attempt in range(self._max_retries + 1):
            last_attempt = attempt == self._max_retries
            delay = self._retry_delay * (2**attempt) + random.uniform(0, 1)

            try:
                async with httpx.AsyncClient(
                    timeout=self.DEFAULT_TIMEOUT, transport=self._transport
                ) as client:
                    response = await client.request(method, url, headers=self._headers(), **kwargs)

            except httpx.TransportError as e:
                if last_attempt:
                    raise VideoServiceError(f"Kling request failed: {e}") from e
                logger.warning(f"Kling request error: {e}. Retrying in {delay:.1f}s...")
                await self._sleep(delay)
                continue

            if response.status_code in self.RETRYABLE_STATUS_CODES and not last_attempt:
                logger.warning(
                    f"Kling {response.status_code} on attempt {attempt + 1}/{self._max_retries + 1}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await self._sleep(delay)
                continue

            if response.status_code >= 400:
                raise VideoServiceError(
                    _error_message(response, "Failed to initiate video generation"),
                    status_code=response.status_code,
                )

            return response.json()

        raise VideoServiceError(f"Request to {url} failed after {self._max_retries + 1} attempts")


def parse_job_state(data: dict, job_id: str = "") -> JobState:
    """Translate a Kling status payload into a job state."""
    record = data.get("data", data) if isinstance(data.get("data"), dict) else data
    status = str(record.get("status", "")).lower()
    progress = _progress(record.get("progress"))

    if status == "completed":
        video_url = record.get("video_url") or record.get("videoUrl")
        if video_url:
            return Completed(result_url=video_url)
        logger.warning(f"Job {job_id} reported completed without a video url")
        return Processing(progress=progress)

    if status == "failed":
        return Failed(reason=record.get("error") or record.get("message") or "Video generation failed")

    if status == "processing":
        return Processing(progress=progress)

    if status != "pending":
        logger.debug(f"Job {job_id} reported unknown status {status!r}")
    return Pending()


def _progress(value: Any) -> Optional[float]:
    """Return progress as a percentage in 0-100, or None if it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        progress = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric progress {value!r}")
        return None
    if not math.isfinite(progress):
        return None
    return min(max(progress, 0.0), 100.0)


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"{default}: {response.status_code}: {response.text[:500]}"
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or default
    return default
