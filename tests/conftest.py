"""Shared fixtures and fakes for the scene media tests."""

import asyncio
from typing import Callable, Optional, Sequence

import pytest

from scenegen.errors import ImageServiceError, VideoServiceError
from scenegen.models import JobState, Processing, Scene, SceneLabel, SceneStatus
from scenegen.services.images import ImageService
from scenegen.services.video import VideoRequest, VideoService


class FakeClock:
    """Manual clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.start = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)

    @property
    def elapsed(self) -> float:
        return self.now - self.start


class FakeImageService(ImageService):
    """Returns numbered image URLs; fails for prompts containing a marker."""

    def __init__(self, fail_when: Sequence[str] = ()) -> None:
        self.fail_when = list(fail_when)
        self.calls: list[dict] = []
        self.on_call: Optional[Callable[[str], None]] = None

    async def generate(self, prompt, style, aspect_ratio, reference_urls=()):
        self.calls.append({
            "prompt": prompt,
            "style": style,
            "aspect_ratio": aspect_ratio,
            "reference_urls": list(reference_urls),
        })
        if self.on_call:
            self.on_call(prompt)
        await asyncio.sleep(0)
        if any(marker in prompt for marker in self.fail_when):
            raise ImageServiceError("image service unavailable")
        return f"https://img.test/{len(self.calls)}.png"


class ScriptedVideoService(VideoService):
    """Video service with scripted job states.

    ``script`` maps an image URL to the list of states its job reports, one
    per status check; the last state repeats. Image URLs in ``fail_submit``
    make submission raise.
    """

    def __init__(
        self,
        script: Optional[dict[str, list[JobState]]] = None,
        default: Optional[list[JobState]] = None,
        fail_submit: Sequence[str] = (),
    ) -> None:
        self.script = script or {}
        self.default = default or [Processing(progress=50)]
        self.fail_submit = set(fail_submit)
        self.submitted: list[VideoRequest] = []
        self.status_calls: list[str] = []
        self._jobs: dict[str, list[JobState]] = {}
        self.on_status: Optional[Callable[[str, int], None]] = None

    async def submit(self, request: VideoRequest) -> str:
        self.submitted.append(request)
        await asyncio.sleep(0)
        if request.image_url in self.fail_submit:
            raise VideoServiceError("submission rejected", status_code=500)
        job_id = f"job-{len(self.submitted)}"
        self._jobs[job_id] = list(self.script.get(request.image_url, self.default))
        return job_id

    async def get_status(self, job_id: str) -> JobState:
        self.status_calls.append(job_id)
        if self.on_status:
            self.on_status(job_id, len(self.status_calls))
        states = self._jobs[job_id]
        if len(states) > 1:
            return states.pop(0)
        return states[0]


def make_scene(
    scene_id: str,
    label: SceneLabel = SceneLabel.HOOK,
    script: str = "",
    status: SceneStatus = SceneStatus.DRAFT,
    **extra,
) -> Scene:
    return Scene(
        id=scene_id,
        label=label,
        script=script or f"Script for {scene_id}",
        status=status,
        **extra,
    )


def ready_scene(scene_id: str, **extra) -> Scene:
    """A scene whose image is ready."""
    return make_scene(
        scene_id,
        status=SceneStatus.IMAGE_READY,
        generated_image_url=f"https://img.test/{scene_id}.png",
        **extra,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
