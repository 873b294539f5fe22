"""Polling of long-running video jobs."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..errors import JobCancelledError, JobFailedError, JobTimeoutError, PipelineError
from ..models import Completed, Failed, Job, Processing, TimedOut
from .video import VideoService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

TRANSIENT_STATUS_CODES = {408, 429}


def is_transient(error: PipelineError) -> bool:
    """True for status-check errors worth another attempt.

    Transport errors carry no status code. Rate limits and server errors are
    retried; any other HTTP status means the job cannot be read at all.
    """
    status_code = getattr(error, "status_code", None)
    if status_code is None:
        return True
    return status_code in TRANSIENT_STATUS_CODES or status_code >= 500


class JobPoller:
    """Waits for a submitted video job to reach a terminal state.

    Each attempt sleeps for the poll interval and then asks the service for
    the job state. The loop ends on the first terminal state or after
    ``max_attempts`` checks, so it never waits longer than
    ``max_attempts * interval`` plus the time spent in status requests.
    """

    DEFAULT_POLL_INTERVAL = 5.0  # seconds
    DEFAULT_MAX_ATTEMPTS = 60  # 5 minutes max

    def __init__(
        self,
        service: VideoService,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the poller.

        Args:
            service: Video service answering status checks.
            interval: Seconds between status checks.
            max_attempts: Checks before the job is considered timed out.
            sleep: Awaitable sleep; tests inject a fake clock here.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._service = service
        self._interval = interval
        self._max_attempts = max_attempts
        self._sleep = sleep

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def ceiling(self) -> float:
        """Total sleep time before a job is declared timed out."""
        return self._interval * self._max_attempts

    async def wait(
        self,
        job_id: str,
        scene_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Poll until the job completes and return its result locator.

        Args:
            job_id: Id returned by the submitter.
            scene_id: Scene the job belongs to, for error context.
            on_progress: Called with the service's progress percentage.
            cancel: Set to stop polling before the next check.
            timeout: Optional wall-clock limit for the whole wait.

        Returns:
            Locator of the generated video.

        Raises:
            JobFailedError: The service reported the job as failed.
            JobTimeoutError: No terminal state within the attempt ceiling or timeout.
            JobCancelledError: ``cancel`` was set while waiting.
        """
        job = await self.poll(job_id, scene_id, on_progress, cancel, timeout)
        if isinstance(job.state, Completed):
            return job.state.result_url
        if isinstance(job.state, Failed):
            raise JobFailedError(job.state.reason, scene_id=scene_id, job_id=job_id)
        raise JobTimeoutError(
            attempts=job.state.attempts,
            waited=job.state.attempts * self._interval,
            scene_id=scene_id,
            job_id=job_id,
        )

    async def poll(
        self,
        job_id: str,
        scene_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> Job:
        """Poll until a terminal state and return the job in that state.

        Raises:
            JobCancelledError: ``cancel`` was set while waiting.
            JobTimeoutError: The wall-clock ``timeout`` expired.
        """
        loop = self._loop(Job(job_id=job_id), scene_id, on_progress, cancel)
        if timeout is None:
            return await loop

        try:
            return await asyncio.wait_for(loop, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Job {job_id} exceeded wall-clock timeout of {timeout}s")
            raise JobTimeoutError(
                attempts=0, waited=timeout, scene_id=scene_id, job_id=job_id
            ) from None

    async def _loop(
        self,
        job: Job,
        scene_id: Optional[str],
        on_progress: Optional[ProgressCallback],
        cancel: Optional[asyncio.Event],
    ) -> Job:
        last_progress: Optional[float] = None

        for attempt in range(1, self._max_attempts + 1):
            await self._pause(job.job_id, scene_id, cancel)

            logger.debug(f"Polling job {job.job_id} (attempt {attempt}/{self._max_attempts})")
            try:
                state = await self._service.get_status(job.job_id)
            except PipelineError as e:
                if not is_transient(e):
                    logger.error(f"Job {job.job_id} status check rejected: {e}")
                    return job.with_state(Failed(reason=e.message or "Status check failed"))
                logger.warning(f"Error checking job {job.job_id}: {e}")
                continue

            job = job.with_state(state)

            if isinstance(state, Processing) and state.progress is not None:
                # Progress is informational; never report it going backwards.
                progress = max(state.progress, last_progress or 0)
                last_progress = progress
                if on_progress:
                    on_progress(progress)

            if isinstance(state, Completed):
                logger.info(f"Job {job.job_id} completed: {state.result_url}")
                if on_progress:
                    on_progress(state.progress)
                return job

            if isinstance(state, Failed):
                logger.error(f"Job {job.job_id} failed: {state.reason}")
                return job

        logger.warning(
            f"Job {job.job_id} still not finished after {self._max_attempts} checks "
            f"({self.ceiling:.0f}s)"
        )
        return job.with_state(TimedOut(attempts=self._max_attempts))

    async def _pause(
        self,
        job_id: str,
        scene_id: Optional[str],
        cancel: Optional[asyncio.Event],
    ) -> None:
        """Sleep for one interval, returning early if cancellation is requested."""
        if cancel is None:
            await self._sleep(self._interval)
            return

        if cancel.is_set():
            raise JobCancelledError("Polling cancelled", scene_id=scene_id, job_id=job_id)

        sleeper = asyncio.ensure_future(self._sleep(self._interval))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (sleeper, waiter) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if cancel.is_set():
            logger.info(f"Polling of job {job_id} cancelled")
            raise JobCancelledError("Polling cancelled", scene_id=scene_id, job_id=job_id)
