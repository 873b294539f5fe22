"""
BatchOrchestrator: image-then-video generation across a storyboard.

  Image phase: compile prompt → image client (placeholder on failure) → image_ready
  Video phase: submit job → poll to a terminal state → video_ready

A failure in one scene's video stage is recorded for that scene and the batch
moves on. The orchestrator holds the store's exclusive writer for the whole
run, so it is the only writer of scene status while a batch is in progress.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Union

from .errors import (
    JobCancelledError,
    JobTimeoutError,
    PipelineError,
    StoryboardError,
)
from .models import (
    BatchProgress,
    BatchReport,
    OutcomeStatus,
    Phase,
    Scene,
    SceneOutcome,
    SceneStatus,
)
from .prompts import VisualStyle, compile_prompt, resolve_style
from .services.images import ImageClient
from .services.poller import JobPoller
from .services.video import SUPPORTED_ASPECT_RATIOS, VideoJobSubmitter, VideoRequest, VideoService
from .store import SceneStore, SceneWriter

logger = logging.getLogger(__name__)

ProgressHandler = Callable[[BatchProgress], None]


class BatchOrchestrator:
    """
    Drives media generation for every scene in a store.

    Usage:
        orchestrator = BatchOrchestrator(store, image_client, video_service)

        # Both phases
        report = await orchestrator.run(on_progress=print)

        # Or one phase at a time
        await orchestrator.generate_images()
        await orchestrator.generate_videos()
    """

    def __init__(
        self,
        store: SceneStore,
        image_client: ImageClient,
        video_service: VideoService,
        poller: Optional[JobPoller] = None,
        style: Union[VisualStyle, str] = VisualStyle.CINEMATIC,
        aspect_ratio: str = "9:16",
        max_concurrency: int = 1,
        skip_placeholder_videos: bool = False,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Scenes to process.
            image_client: Image generation client.
            video_service: Video generation service.
            poller: Job poller. Defaults to a 5s / 60 attempt poller on the service.
            style: Visual style for every image prompt in the batch.
            aspect_ratio: Aspect ratio for images and videos.
            max_concurrency: Scenes processed at the same time.
            skip_placeholder_videos: Leave scenes with placeholder images out of
                the video phase.
        """
        if aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(
                f"Invalid aspect_ratio: {aspect_ratio}. Must be one of {', '.join(SUPPORTED_ASPECT_RATIOS)}"
            )
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self._store = store
        self._images = image_client
        self._submitter = VideoJobSubmitter(video_service)
        self._poller = poller or JobPoller(video_service)
        self._style = resolve_style(style)
        self._aspect_ratio = aspect_ratio
        self._max_concurrency = max_concurrency
        self._skip_placeholder_videos = skip_placeholder_videos

    @property
    def style(self) -> VisualStyle:
        return self._style

    # ── Batch entry points ───────────────────────────────────────────────

    async def run(
        self,
        regenerate: Iterable[str] = (),
        on_progress: Optional[ProgressHandler] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Run the image phase, then the video phase.

        Args:
            regenerate: Scene ids whose image (and so video) is generated again.
            on_progress: Receives aggregate progress of the running phase.
            cancel: Set to stop; in-flight polling stops before its next check.

        Returns:
            BatchReport with one outcome per scene per phase.

        Raises:
            StoryboardError: If the storyboard cannot be processed at all.
            StoreLockedError: If another writer holds the store.
        """
        regenerate = list(regenerate)
        self._validate(regenerate)

        with self._store.writer() as writer:
            report = await self._image_phase(writer, regenerate, on_progress, cancel)
            report.merge(await self._video_phase(writer, (), on_progress, cancel))

        self._log_summary(report)
        return report

    async def generate_images(
        self,
        regenerate: Iterable[str] = (),
        on_progress: Optional[ProgressHandler] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Generate images for every scene that does not have one yet."""
        regenerate = list(regenerate)
        self._validate(regenerate)

        with self._store.writer() as writer:
            report = await self._image_phase(writer, regenerate, on_progress, cancel)

        self._log_summary(report)
        return report

    async def generate_videos(
        self,
        regenerate: Iterable[str] = (),
        on_progress: Optional[ProgressHandler] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Generate videos for every scene whose image is ready.

        Scenes listed in ``regenerate`` that already have a video get a new one.
        """
        regenerate = list(regenerate)
        self._validate(regenerate)

        with self._store.writer() as writer:
            report = await self._video_phase(writer, regenerate, on_progress, cancel)

        self._log_summary(report)
        return report

    # ── Single-scene entry points ────────────────────────────────────────

    async def generate_scene_image(self, scene_id: str) -> SceneOutcome:
        """Generate (or regenerate) the image of one scene."""
        self._validate([scene_id])
        with self._store.writer() as writer:
            return await self._generate_image(writer, scene_id)

    async def generate_scene_video(
        self,
        scene_id: str,
        on_progress: Optional[Callable[[float], None]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> SceneOutcome:
        """Generate (or regenerate) the video of one scene."""
        self._validate([scene_id])
        with self._store.writer() as writer:
            scene = writer.get(scene_id)
            if scene.status == SceneStatus.VIDEO_READY:
                writer.update(scene_id, status=SceneStatus.IMAGE_READY, generated_video_url=None)
            return await self._generate_video(writer, scene_id, on_progress, cancel)

    # ── Phases ───────────────────────────────────────────────────────────

    async def _image_phase(
        self,
        writer: SceneWriter,
        regenerate: list[str],
        on_progress: Optional[ProgressHandler],
        cancel: Optional[asyncio.Event],
    ) -> BatchReport:
        report = BatchReport()
        forced = set(regenerate)

        eligible: list[str] = []
        for scene_id in self._store.scene_ids():
            scene = writer.get(scene_id)
            if scene_id in forced or not scene.has_image:
                eligible.append(scene_id)
            else:
                report.add(SceneOutcome(
                    scene_id=scene_id,
                    phase=Phase.IMAGE,
                    status=OutcomeStatus.SKIPPED,
                    locator=scene.generated_image_url,
                ))

        total = len(eligible)
        logger.info(f"Image phase: {total} scene(s) to generate with {self._style.value} style")

        async def image_task(scene_id: str) -> SceneOutcome:
            return await self._generate_image(writer, scene_id)

        outcomes = await self._run_phase(Phase.IMAGE, eligible, image_task, on_progress, cancel)
        for outcome in outcomes:
            report.add(outcome)

        report.progress[Phase.IMAGE] = BatchProgress(
            current=_finished(outcomes), total=total, phase=Phase.IMAGE
        )
        report.completed_at = datetime.now()
        return report

    async def _video_phase(
        self,
        writer: SceneWriter,
        regenerate: list[str],
        on_progress: Optional[ProgressHandler],
        cancel: Optional[asyncio.Event],
    ) -> BatchReport:
        report = BatchReport()
        forced = set(regenerate)

        eligible: list[str] = []
        for scene_id in self._store.scene_ids():
            scene = writer.get(scene_id)

            if scene.status == SceneStatus.VIDEO_GENERATING:
                # Left over from an interrupted run.
                scene = writer.update(scene_id, status=SceneStatus.IMAGE_READY)
            elif scene.status == SceneStatus.VIDEO_READY and scene_id in forced:
                scene = writer.update(
                    scene_id, status=SceneStatus.IMAGE_READY, generated_video_url=None
                )

            reason = self._video_skip_reason(scene)
            if reason:
                report.add(SceneOutcome(
                    scene_id=scene_id,
                    phase=Phase.VIDEO,
                    status=OutcomeStatus.SKIPPED,
                    locator=scene.generated_video_url,
                    error=reason,
                ))
            else:
                eligible.append(scene_id)

        total = len(eligible)
        logger.info(f"Video phase: {total} scene(s) with ready images")

        async def video_task(scene_id: str, emit: Callable[[float], None]) -> SceneOutcome:
            return await self._generate_video(writer, scene_id, emit, cancel)

        outcomes = await self._run_phase(Phase.VIDEO, eligible, video_task, on_progress, cancel)
        for outcome in outcomes:
            report.add(outcome)

        report.progress[Phase.VIDEO] = BatchProgress(
            current=_finished(outcomes), total=total, phase=Phase.VIDEO
        )
        report.completed_at = datetime.now()
        return report

    async def _run_phase(
        self,
        phase: Phase,
        scene_ids: list[str],
        task: Callable[..., Awaitable[SceneOutcome]],
        on_progress: Optional[ProgressHandler],
        cancel: Optional[asyncio.Event],
    ) -> list[SceneOutcome]:
        """Run ``task`` for each scene, at most ``max_concurrency`` at a time.

        The completed count only changes between awaits on the event loop, so
        concurrent scene tasks never race on it.
        """
        total = len(scene_ids)
        completed = 0
        semaphore = asyncio.Semaphore(self._max_concurrency)

        self._emit(on_progress, BatchProgress(current=0, total=total, phase=phase))

        async def one(scene_id: str) -> SceneOutcome:
            nonlocal completed
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    outcome = SceneOutcome(
                        scene_id=scene_id,
                        phase=phase,
                        status=OutcomeStatus.CANCELLED,
                        error="Batch cancelled",
                    )
                elif phase == Phase.VIDEO:
                    def emit(job_progress: float) -> None:
                        self._emit(on_progress, BatchProgress(
                            current=completed,
                            total=total,
                            phase=phase,
                            scene_id=scene_id,
                            job_progress=job_progress,
                        ))
                    outcome = await task(scene_id, emit)
                else:
                    outcome = await task(scene_id)

            if outcome.status != OutcomeStatus.CANCELLED:
                completed += 1
            self._emit(on_progress, BatchProgress(
                current=completed, total=total, phase=phase, scene_id=scene_id
            ))
            return outcome

        if self._max_concurrency == 1:
            return [await one(scene_id) for scene_id in scene_ids]

        tasks = [asyncio.ensure_future(one(scene_id)) for scene_id in scene_ids]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # Siblings must settle while the caller still holds the writer.
            for pending in tasks:
                pending.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    # ── Per-scene work ───────────────────────────────────────────────────

    async def _generate_image(self, writer: SceneWriter, scene_id: str) -> SceneOutcome:
        scene = writer.get(scene_id)
        if scene.status != SceneStatus.DRAFT:
            writer.reset(scene_id)
        scene = writer.update(scene_id, status=SceneStatus.IMAGE_GENERATING)

        prompt = compile_prompt(scene, self._style)
        try:
            result = await self._images.generate(
                prompt=prompt,
                style=self._style.value,
                aspect_ratio=self._aspect_ratio,
                scene_id=scene_id,
                reference_urls=scene.reference_urls,
            )
        except asyncio.CancelledError:
            writer.update(scene_id, status=SceneStatus.DRAFT)
            raise

        writer.update(
            scene_id,
            status=SceneStatus.IMAGE_READY,
            generated_image_url=result.url,
            image_is_placeholder=result.is_placeholder,
        )

        return SceneOutcome(
            scene_id=scene_id,
            phase=Phase.IMAGE,
            status=OutcomeStatus.DEGRADED if result.is_placeholder else OutcomeStatus.SUCCEEDED,
            locator=result.url,
            error=result.error,
        )

    async def _generate_video(
        self,
        writer: SceneWriter,
        scene_id: str,
        on_progress: Optional[Callable[[float], None]],
        cancel: Optional[asyncio.Event],
    ) -> SceneOutcome:
        scene = writer.get(scene_id)
        reason = self._video_skip_reason(scene)
        if reason:
            logger.info(f"Skipping video for {scene_id}: {reason}")
            return SceneOutcome(
                scene_id=scene_id,
                phase=Phase.VIDEO,
                status=OutcomeStatus.SKIPPED,
                error=reason,
            )

        job_id: Optional[str] = None
        status = OutcomeStatus.FAILED
        try:
            request = VideoRequest.for_scene(scene, self._aspect_ratio)
            writer.update(scene_id, status=SceneStatus.VIDEO_GENERATING, last_error=None)

            job = await self._submitter.submit(request, scene_id=scene_id)
            job_id = job.job_id
            video_url = await self._poller.wait(
                job_id, scene_id=scene_id, on_progress=on_progress, cancel=cancel
            )

        except asyncio.CancelledError:
            self._revert_video(writer, scene_id, "Video generation interrupted")
            raise

        except JobTimeoutError as e:
            status, error = OutcomeStatus.TIMED_OUT, e
        except JobCancelledError as e:
            status, error = OutcomeStatus.CANCELLED, e
        except PipelineError as e:
            error = e
        except Exception as e:
            logger.exception(f"Unexpected error generating video for {scene_id}")
            error = e

        else:
            writer.update(
                scene_id,
                status=SceneStatus.VIDEO_READY,
                generated_video_url=video_url,
            )
            return SceneOutcome(
                scene_id=scene_id,
                phase=Phase.VIDEO,
                status=OutcomeStatus.SUCCEEDED,
                locator=video_url,
                job_id=job_id,
            )

        message = str(error)
        logger.warning(f"Video for {scene_id} {status.value}: {message}")
        self._revert_video(writer, scene_id, message)
        return SceneOutcome(
            scene_id=scene_id,
            phase=Phase.VIDEO,
            status=status,
            error=message,
            job_id=job_id or getattr(error, "job_id", None),
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _validate(self, regenerate: list[str]) -> None:
        ids = self._store.scene_ids()
        if len(set(ids)) != len(ids):
            raise StoryboardError("Storyboard has duplicate scene ids")
        unknown = [scene_id for scene_id in regenerate if scene_id not in ids]
        if unknown:
            raise StoryboardError(f"Unknown scene id(s): {', '.join(unknown)}")

    def _video_skip_reason(self, scene: Scene) -> Optional[str]:
        if scene.status == SceneStatus.VIDEO_READY:
            return "video already ready"
        if scene.status != SceneStatus.IMAGE_READY or not scene.generated_image_url:
            return "image not ready"
        if self._skip_placeholder_videos and scene.image_is_placeholder:
            return "image is a placeholder"
        return None

    @staticmethod
    def _revert_video(writer: SceneWriter, scene_id: str, error: str) -> None:
        scene = writer.get(scene_id)
        changes = {"last_error": error}
        if scene.status == SceneStatus.VIDEO_GENERATING:
            changes["status"] = SceneStatus.IMAGE_READY
        writer.update(scene_id, **changes)

    @staticmethod
    def _emit(on_progress: Optional[ProgressHandler], progress: BatchProgress) -> None:
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception as e:
            logger.warning(f"Progress handler raised: {e}")

    @staticmethod
    def _log_summary(report: BatchReport) -> None:
        summary = ", ".join(
            f"{status.value}={report.count(status)}"
            for status in OutcomeStatus
            if report.count(status)
        )
        logger.info(f"Batch finished: {summary or 'nothing to do'}")


def _finished(outcomes: list[SceneOutcome]) -> int:
    """Count scenes a phase actually processed; cancelled scenes were not."""
    return sum(1 for outcome in outcomes if outcome.status != OutcomeStatus.CANCELLED)
