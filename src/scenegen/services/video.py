"""Video job contract and submitter."""

import logging
from abc import ABC, abstractmethod
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..errors import VideoSubmissionError
from ..models import Job, JobState, Scene

logger = logging.getLogger(__name__)

MAX_MOTION_PROMPT_LENGTH = 200
SUPPORTED_DURATIONS = (3, 5)
SUPPORTED_ASPECT_RATIOS = ("9:16", "16:9", "1:1")


class VideoRequest(BaseModel):
    """Parameters of one image-to-video job."""

    image_url: str = Field(..., min_length=1, description="Source image locator")
    motion_prompt: str = Field(default="", description="Motion guidance text")
    duration: Literal[3, 5] = Field(default=5, description="Clip length in seconds")
    aspect_ratio: str = Field(default="9:16", description="Video aspect ratio")

    @field_validator("motion_prompt")
    @classmethod
    def _truncate_motion_prompt(cls, value: str) -> str:
        return value[:MAX_MOTION_PROMPT_LENGTH]

    @field_validator("aspect_ratio")
    @classmethod
    def _check_aspect_ratio(cls, value: str) -> str:
        if value not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(
                f"Invalid aspect_ratio: {value}. Must be one of {', '.join(SUPPORTED_ASPECT_RATIOS)}"
            )
        return value

    @classmethod
    def for_scene(cls, scene: Scene, aspect_ratio: str = "9:16") -> "VideoRequest":
        """Build the request for a scene that already has an image."""
        if not scene.generated_image_url:
            raise ValueError(f"Scene {scene.id} has no image")
        return cls(
            image_url=scene.generated_image_url,
            motion_prompt=scene.script,
            duration=3 if scene.duration_estimate <= 3 else 5,
            aspect_ratio=aspect_ratio,
        )


class VideoService(ABC):
    """Contract of the remote, asynchronous video generation service."""

    @abstractmethod
    async def submit(self, request: VideoRequest) -> str:
        """Submit a job and return its id without waiting for completion."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> JobState:
        """Return the current state of a job."""
        ...


class VideoJobSubmitter:
    """Submits video jobs, wrapping service failures with scene context."""

    def __init__(self, service: VideoService) -> None:
        self._service = service

    @property
    def service(self) -> VideoService:
        return self._service

    async def submit(self, request: VideoRequest, scene_id: Optional[str] = None) -> Job:
        """Submit a video job.

        Args:
            request: Video parameters.
            scene_id: Scene the job belongs to.

        Returns:
            Job handle in the pending state.

        Raises:
            VideoSubmissionError: If the service did not accept the job.
        """
        try:
            job_id = await self._service.submit(request)
        except Exception as e:
            logger.error(f"Video submission failed for {scene_id or 'clip'}: {e}")
            raise VideoSubmissionError(
                f"Video submission failed: {e}", scene_id=scene_id
            ) from e

        if not job_id:
            raise VideoSubmissionError("Video service returned no job id", scene_id=scene_id)

        logger.info(f"Video job submitted for {scene_id or 'clip'}: {job_id}")
        return Job(job_id=job_id)
