"""Exceptions raised by the scene media pipeline.

Every error that concerns a particular scene or video job carries the scene id
and job id so log lines and batch reports can be correlated.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""

    def __init__(
        self,
        message: str,
        scene_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> None:
        self.message = message
        self.scene_id = scene_id
        self.job_id = job_id
        super().__init__(self._format())

    def _format(self) -> str:
        context = []
        if self.scene_id:
            context.append(f"scene={self.scene_id}")
        if self.job_id:
            context.append(f"job={self.job_id}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


# Service layer

class ImageServiceError(PipelineError):
    """The image generation service rejected or failed a request."""


class VideoServiceError(PipelineError):
    """The video generation service rejected or failed a request."""

    def __init__(
        self,
        message: str,
        scene_id: Optional[str] = None,
        job_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, scene_id=scene_id, job_id=job_id)


# Video stage

class VideoSubmissionError(PipelineError):
    """A video job could not be submitted."""


class JobFailedError(PipelineError):
    """The video service reported the job as failed."""

    def __init__(self, reason: str, scene_id: Optional[str] = None, job_id: Optional[str] = None) -> None:
        self.reason = reason
        super().__init__(f"Video generation failed: {reason}", scene_id=scene_id, job_id=job_id)


class JobTimeoutError(PipelineError):
    """The video job did not reach a terminal state within the polling ceiling."""

    def __init__(
        self,
        attempts: int,
        waited: float,
        scene_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> None:
        self.attempts = attempts
        self.waited = waited
        super().__init__(
            f"Video generation still processing after {attempts} checks ({waited:.0f}s)",
            scene_id=scene_id,
            job_id=job_id,
        )


class JobCancelledError(PipelineError):
    """Polling was stopped by a cancellation request."""


# Scene state

class InvalidTransitionError(PipelineError):
    """A scene status change would break the image-before-video ordering."""


class SceneNotFoundError(PipelineError):
    """No scene with the given id exists in the store."""


class StoreLockedError(PipelineError):
    """Another writer already holds the scene store."""


class StoryboardError(PipelineError):
    """The storyboard itself is invalid and cannot be processed."""
