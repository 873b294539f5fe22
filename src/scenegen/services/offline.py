"""Offline video service for development and tests.

Job ids carry a reserved prefix followed by the submission time in
milliseconds. Status is derived from the wall-clock time elapsed since then,
so any process can answer a status check for such an id.
"""

import logging
import time
from typing import Callable

from ..models import Completed, JobState, Processing
from .video import VideoRequest, VideoService

logger = logging.getLogger(__name__)

OFFLINE_JOB_PREFIX = "mock_task_"
OFFLINE_RESULT_URL = "https://sample-videos.com/video321/mp4/720/big_buck_bunny_720p_1mb.mp4"
DEFAULT_THRESHOLD = 3.0
MAX_OFFLINE_PROGRESS = 90


def is_offline_job(job_id: str) -> bool:
    return job_id.startswith(OFFLINE_JOB_PREFIX)


def offline_job_id(submitted_at: float) -> str:
    """Return the offline job id for a submission time in seconds."""
    return f"{OFFLINE_JOB_PREFIX}{int(submitted_at * 1000)}"


class OfflineVideoService(VideoService):
    """Simulates video jobs that complete a fixed time after submission."""

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        clock: Callable[[], float] = time.time,
        result_url: str = OFFLINE_RESULT_URL,
    ) -> None:
        """Initialize the offline service.

        Args:
            threshold: Seconds from submission until a job completes.
            clock: Returns the current time in seconds.
            result_url: Locator reported by every completed job.
        """
        self._threshold = threshold
        self._clock = clock
        self._result_url = result_url

    async def submit(self, request: VideoRequest) -> str:
        job_id = offline_job_id(self._clock())
        logger.info(f"Offline video job created: {job_id}")
        return job_id

    async def get_status(self, job_id: str) -> JobState:
        return self.status_at(job_id, self._clock())

    def status_at(self, job_id: str, now: float) -> JobState:
        """Return the simulated state of ``job_id`` at time ``now``."""
        if not is_offline_job(job_id):
            raise ValueError(f"Not an offline job id: {job_id}")

        submitted_ms = int(job_id[len(OFFLINE_JOB_PREFIX):])
        elapsed = max(0.0, now - submitted_ms / 1000)

        if elapsed < self._threshold:
            progress = int(elapsed * MAX_OFFLINE_PROGRESS / self._threshold)
            return Processing(progress=min(progress, MAX_OFFLINE_PROGRESS - 1))

        return Completed(result_url=self._result_url)
