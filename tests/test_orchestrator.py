"""Tests for the batch orchestrator."""

import asyncio

import pytest

from scenegen.errors import StoreLockedError, StoryboardError
from scenegen.models import (
    BatchProgress,
    Completed,
    Failed,
    OutcomeStatus,
    Phase,
    Processing,
    SceneStatus,
)
from scenegen.orchestrator import BatchOrchestrator
from scenegen.services.images import ImageClient, ImageService
from scenegen.services.offline import OFFLINE_RESULT_URL, OfflineVideoService
from scenegen.services.poller import JobPoller
from scenegen.store import InMemorySceneStore

from conftest import FakeImageService, ScriptedVideoService, make_scene, ready_scene


def _video_url(n):
    return f"https://vid.test/{n}.mp4"


def _orchestrator(store, clock, images=None, video=None, **kwargs):
    video = video or ScriptedVideoService(default=[Completed(result_url=_video_url("any"))])
    return BatchOrchestrator(
        store=store,
        image_client=ImageClient(images or FakeImageService(), clock=clock),
        video_service=video,
        poller=JobPoller(video, sleep=clock.sleep),
        **kwargs,
    )


class TestImagePhase:

    def test_one_image_failure_degrades_only_that_scene(self, clock):
        store = InMemorySceneStore([make_scene("s1"), make_scene("s2"), make_scene("s3")])
        images = FakeImageService(fail_when=["Script for s2"])
        progress = []

        report = asyncio.run(
            _orchestrator(store, clock, images=images).generate_images(on_progress=progress.append)
        )

        scenes = {scene.id: scene for scene in store.scenes()}
        assert all(scene.status == SceneStatus.IMAGE_READY for scene in scenes.values())
        assert scenes["s1"].generated_image_url == "https://img.test/1.png"
        assert scenes["s3"].generated_image_url == "https://img.test/3.png"
        assert scenes["s2"].generated_image_url == "https://picsum.photos/seed/1700000000000/540/960"
        assert scenes["s2"].image_is_placeholder
        assert not scenes["s1"].image_is_placeholder

        assert report.outcome("s2", Phase.IMAGE).status == OutcomeStatus.DEGRADED
        assert report.count(OutcomeStatus.SUCCEEDED, Phase.IMAGE) == 2
        assert report.failures == []

        assert progress[0] == BatchProgress(current=0, total=3, phase=Phase.IMAGE)
        assert (progress[-1].current, progress[-1].total) == (3, 3)
        assert report.progress[Phase.IMAGE].fraction == 1.0

    def test_prompt_uses_style_and_aspect_ratio(self, clock):
        store = InMemorySceneStore([make_scene("s1", script="Neon city at night")])
        images = FakeImageService()

        asyncio.run(
            _orchestrator(store, clock, images=images, style="bold", aspect_ratio="16:9").generate_images()
        )

        call = images.calls[0]
        assert call["style"] == "bold"
        assert call["aspect_ratio"] == "16:9"
        assert call["prompt"].startswith("Neon city at night. Visual style: ")

    def test_reference_images_are_forwarded(self, clock):
        scene = make_scene("s1", reference_images=[{"id": "r1", "url": "https://ref.test/logo.png"}])
        images = FakeImageService()

        asyncio.run(_orchestrator(InMemorySceneStore([scene]), clock, images=images).generate_images())

        assert images.calls[0]["reference_urls"] == ["https://ref.test/logo.png"]

    def test_scenes_with_images_are_skipped_unless_regenerated(self, clock):
        store = InMemorySceneStore([ready_scene("s1"), ready_scene("s2"), make_scene("s3")])
        images = FakeImageService()

        report = asyncio.run(
            _orchestrator(store, clock, images=images).generate_images(regenerate=["s2"])
        )

        assert len(images.calls) == 2
        assert report.outcome("s1", Phase.IMAGE).status == OutcomeStatus.SKIPPED
        assert report.outcome("s2", Phase.IMAGE).status == OutcomeStatus.SUCCEEDED
        assert store.get("s1").generated_image_url == "https://img.test/s1.png"
        assert store.get("s2").generated_image_url == "https://img.test/1.png"

    def test_regenerating_an_image_drops_the_old_video(self, clock):
        scene = ready_scene("s1", generated_video_url=_video_url(1))
        scene.status = SceneStatus.VIDEO_READY
        store = InMemorySceneStore([scene])

        asyncio.run(_orchestrator(store, clock).generate_images(regenerate=["s1"]))

        updated = store.get("s1")
        assert updated.status == SceneStatus.IMAGE_READY
        assert updated.generated_video_url is None

    def test_empty_storyboard(self, clock):
        progress = []
        report = asyncio.run(
            _orchestrator(InMemorySceneStore(), clock).run(on_progress=progress.append)
        )
        assert report.outcomes == []
        assert progress[0].total == 0
        assert progress[0].fraction == 1.0


class TestVideoPhase:

    def test_one_submission_failure_leaves_other_scene_ready(self, clock):
        video = ScriptedVideoService(
            script={"https://img.test/s1.png": [Processing(progress=40), Completed(result_url=_video_url(1))]},
            fail_submit=["https://img.test/s2.png"],
        )
        store = InMemorySceneStore([ready_scene("s1"), ready_scene("s2")])

        report = asyncio.run(_orchestrator(store, clock, video=video).generate_videos())

        s1, s2 = store.get("s1"), store.get("s2")
        assert s1.status == SceneStatus.VIDEO_READY
        assert s1.generated_video_url == _video_url(1)
        assert s2.status == SceneStatus.IMAGE_READY
        assert s2.generated_video_url is None
        assert "submission rejected" in s2.last_error

        failed = report.outcome("s2", Phase.VIDEO)
        assert failed.status == OutcomeStatus.FAILED
        assert "submission rejected" in failed.error
        assert report.outcome("s1", Phase.VIDEO).job_id == "job-1"

    def test_failed_job_is_recorded(self, clock):
        video = ScriptedVideoService(default=[Failed(reason="content policy violation")])
        store = InMemorySceneStore([ready_scene("s1")])

        report = asyncio.run(_orchestrator(store, clock, video=video).generate_videos())

        outcome = report.outcome("s1", Phase.VIDEO)
        assert outcome.status == OutcomeStatus.FAILED
        assert "content policy violation" in outcome.error
        assert outcome.job_id == "job-1"
        assert store.get("s1").status == SceneStatus.IMAGE_READY
        assert len(video.status_calls) == 1

    def test_timeout_is_distinct_from_failure(self, clock):
        video = ScriptedVideoService(
            script={"https://img.test/s2.png": [Completed(result_url=_video_url(2))]},
            default=[Processing(progress=50)],
        )
        store = InMemorySceneStore([ready_scene("s1"), ready_scene("s2")])

        report = asyncio.run(_orchestrator(store, clock, video=video).generate_videos())

        assert report.outcome("s1", Phase.VIDEO).status == OutcomeStatus.TIMED_OUT
        assert report.outcome("s2", Phase.VIDEO).status == OutcomeStatus.SUCCEEDED
        assert store.get("s1").status == SceneStatus.IMAGE_READY
        assert store.get("s2").status == SceneStatus.VIDEO_READY
        assert clock.elapsed == 305.0
        assert len(report.failures) == 1

    def test_scenes_without_images_are_not_submitted(self, clock):
        video = ScriptedVideoService()
        store = InMemorySceneStore([make_scene("s1"), make_scene("s2", status=SceneStatus.IMAGE_GENERATING)])

        report = asyncio.run(_orchestrator(store, clock, video=video).generate_videos())

        assert video.submitted == []
        assert report.outcome("s1", Phase.VIDEO).status == OutcomeStatus.SKIPPED
        assert report.outcome("s1", Phase.VIDEO).error == "image not ready"
        assert store.get("s1").status == SceneStatus.DRAFT

    def test_request_built_from_scene(self, clock):
        video = ScriptedVideoService(default=[Completed(result_url=_video_url(1))])
        store = InMemorySceneStore([ready_scene("s1", script="x" * 300, duration_estimate=2.0)])

        asyncio.run(_orchestrator(store, clock, video=video, aspect_ratio="1:1").generate_videos())

        request = video.submitted[0]
        assert request.image_url == "https://img.test/s1.png"
        assert request.motion_prompt == "x" * 200
        assert request.duration == 3
        assert request.aspect_ratio == "1:1"

    def test_job_progress_is_reported(self, clock):
        video = ScriptedVideoService(default=[Processing(progress=40), Completed(result_url=_video_url(1))])
        store = InMemorySceneStore([ready_scene("s1")])
        progress = []

        asyncio.run(_orchestrator(store, clock, video=video).generate_videos(on_progress=progress.append))

        job_updates = [p.job_progress for p in progress if p.job_progress is not None]
        assert job_updates == [40, 100.0]
        assert all(p.phase == Phase.VIDEO for p in progress)
        assert (progress[-1].current, progress[-1].total) == (1, 1)

    def test_existing_videos_are_kept_unless_regenerated(self, clock):
        done = ready_scene("s1", generated_video_url=_video_url("old"))
        done.status = SceneStatus.VIDEO_READY
        again = done.model_copy(update={"id": "s2"})
        video = ScriptedVideoService(default=[Completed(result_url=_video_url("new"))])
        store = InMemorySceneStore([done, again])

        report = asyncio.run(_orchestrator(store, clock, video=video).generate_videos(regenerate=["s2"]))

        assert len(video.submitted) == 1
        assert report.outcome("s1", Phase.VIDEO).status == OutcomeStatus.SKIPPED
        assert store.get("s1").generated_video_url == _video_url("old")
        assert store.get("s2").generated_video_url == _video_url("new")

    def test_interrupted_job_is_resubmitted(self, clock):
        stale = ready_scene("s1")
        stale.status = SceneStatus.VIDEO_GENERATING
        video = ScriptedVideoService(default=[Completed(result_url=_video_url(1))])
        store = InMemorySceneStore([stale])

        asyncio.run(_orchestrator(store, clock, video=video).generate_videos())

        assert store.get("s1").status == SceneStatus.VIDEO_READY

    def test_placeholder_images_can_be_left_out(self, clock):
        video = ScriptedVideoService()
        store = InMemorySceneStore([ready_scene("s1", image_is_placeholder=True)])

        report = asyncio.run(
            _orchestrator(store, clock, video=video, skip_placeholder_videos=True).generate_videos()
        )

        assert video.submitted == []
        assert report.outcome("s1", Phase.VIDEO).error == "image is a placeholder"


class TestBatchRun:

    def test_full_offline_run(self, clock):
        video = OfflineVideoService(threshold=3.0, clock=clock)
        store = InMemorySceneStore([make_scene("s1"), make_scene("s2")])

        report = asyncio.run(_orchestrator(store, clock, video=video).run())

        for scene in store.scenes():
            assert scene.status == SceneStatus.VIDEO_READY
            assert scene.generated_video_url == OFFLINE_RESULT_URL
        assert report.count(OutcomeStatus.SUCCEEDED) == 4
        assert report.progress[Phase.IMAGE].current == 2
        assert report.progress[Phase.VIDEO].current == 2
        assert clock.sleeps == [5.0, 5.0]

    def test_images_finish_before_any_video(self, clock):
        events = []
        images = FakeImageService()
        images.on_call = lambda prompt: events.append("image")
        video = ScriptedVideoService(default=[Completed(result_url=_video_url(1))])
        video.on_status = lambda job_id, count: events.append("video")
        store = InMemorySceneStore([make_scene("s1"), make_scene("s2")])

        asyncio.run(_orchestrator(store, clock, images=images, video=video, max_concurrency=2).run())

        assert events == ["image", "image", "video", "video"]

    def test_cancel_stops_polling_and_remaining_scenes(self, clock):
        video = ScriptedVideoService(default=[Processing(progress=10)])
        store = InMemorySceneStore([ready_scene("s1"), ready_scene("s2")])

        async def go():
            cancel = asyncio.Event()
            video.on_status = lambda job_id, count: cancel.set() if count == 2 else None
            return await _orchestrator(store, clock, video=video).generate_videos(cancel=cancel)

        report = asyncio.run(go())

        assert report.outcome("s1", Phase.VIDEO).status == OutcomeStatus.CANCELLED
        assert report.outcome("s2", Phase.VIDEO).status == OutcomeStatus.CANCELLED
        assert len(video.status_calls) == 2
        assert len(video.submitted) == 1
        assert store.get("s1").status == SceneStatus.IMAGE_READY
        assert not store.locked
        assert report.progress[Phase.VIDEO] == BatchProgress(current=0, total=2, phase=Phase.VIDEO)

    def test_cancelled_scenes_do_not_count_as_done(self, clock):
        video = ScriptedVideoService(
            script={"https://img.test/s1.png": [Completed(result_url=_video_url(1))]},
            default=[Processing(progress=10)],
        )
        store = InMemorySceneStore([ready_scene("s1"), ready_scene("s2"), ready_scene("s3")])
        progress = []

        async def go():
            cancel = asyncio.Event()
            video.on_status = lambda job_id, count: cancel.set()
            return await _orchestrator(store, clock, video=video).generate_videos(
                on_progress=progress.append, cancel=cancel
            )

        report = asyncio.run(go())

        assert report.outcome("s1", Phase.VIDEO).status == OutcomeStatus.SUCCEEDED
        assert report.count(OutcomeStatus.CANCELLED, Phase.VIDEO) == 2
        assert (report.progress[Phase.VIDEO].current, report.progress[Phase.VIDEO].total) == (1, 3)
        assert report.to_dict()["progress"]["video"] == {"current": 1, "total": 3}
        assert max(p.current for p in progress) == 1

    def test_unexpected_error_settles_sibling_scenes(self, clock):
        class BrokenDisk(InMemorySceneStore):
            def _save(self, scene):
                if scene.id == "s1" and scene.status == SceneStatus.IMAGE_READY:
                    raise OSError("disk full")
                super()._save(scene)

        class SlowForSecond(FakeImageService):
            async def generate(self, prompt, style, aspect_ratio, reference_urls=()):
                if "Script for s2" in prompt:
                    await asyncio.sleep(30)
                return await super().generate(prompt, style, aspect_ratio, reference_urls)

        store = BrokenDisk([make_scene("s1"), make_scene("s2")])
        orchestrator = _orchestrator(store, clock, images=SlowForSecond(), max_concurrency=2)

        with pytest.raises(OSError, match="disk full"):
            asyncio.run(orchestrator.generate_images())

        assert not store.locked
        assert store.get("s2").status == SceneStatus.DRAFT

    def test_concurrency_is_bounded(self, clock):
        active = {"now": 0, "max": 0}

        class SlowImages(ImageService):
            async def generate(self, prompt, style, aspect_ratio, reference_urls=()):
                active["now"] += 1
                active["max"] = max(active["max"], active["now"])
                for _ in range(3):
                    await asyncio.sleep(0)
                active["now"] -= 1
                return "https://img.test/slow.png"

        store = InMemorySceneStore([make_scene(f"s{i}") for i in range(5)])
        report = asyncio.run(
            _orchestrator(store, clock, images=SlowImages(), max_concurrency=2).generate_images()
        )

        assert active["max"] == 2
        assert [o.scene_id for o in report.for_phase(Phase.IMAGE)] == [f"s{i}" for i in range(5)]

    def test_store_is_locked_during_a_run(self, clock):
        store = InMemorySceneStore([make_scene("s1")])
        seen = []
        images = FakeImageService()
        images.on_call = lambda prompt: seen.append(store.locked)

        asyncio.run(_orchestrator(store, clock, images=images).generate_images())

        assert seen == [True]
        assert not store.locked

    def test_run_refuses_a_held_store(self, clock):
        store = InMemorySceneStore([make_scene("s1")])
        with store.writer():
            with pytest.raises(StoreLockedError):
                asyncio.run(_orchestrator(store, clock).run())

    def test_unknown_regenerate_id(self, clock):
        store = InMemorySceneStore([make_scene("s1")])
        with pytest.raises(StoryboardError):
            asyncio.run(_orchestrator(store, clock).run(regenerate=["nope"]))

    def test_progress_handler_errors_do_not_abort(self, clock):
        store = InMemorySceneStore([make_scene("s1")])

        def broken(progress):
            raise RuntimeError("display closed")

        report = asyncio.run(_orchestrator(store, clock).run(on_progress=broken))
        assert report.count(OutcomeStatus.SUCCEEDED) == 2

    def test_rejects_bad_settings(self, clock):
        with pytest.raises(ValueError):
            _orchestrator(InMemorySceneStore(), clock, aspect_ratio="4:3")
        with pytest.raises(ValueError):
            _orchestrator(InMemorySceneStore(), clock, max_concurrency=0)

    def test_report_is_saved(self, clock, tmp_path):
        store = InMemorySceneStore([make_scene("s1")])
        report = asyncio.run(_orchestrator(store, clock).run())

        path = tmp_path / "out" / "report.json"
        report.save(path)

        data = report.to_dict()
        assert path.exists()
        assert data["summary"]["succeeded"] == 2
        assert data["outcomes"][0]["phase"] == "image"


class TestSingleScene:

    def test_generate_scene_image(self, clock):
        store = InMemorySceneStore([ready_scene("s1"), make_scene("s2")])
        outcome = asyncio.run(_orchestrator(store, clock).generate_scene_image("s1"))

        assert outcome.status == OutcomeStatus.SUCCEEDED
        assert store.get("s1").generated_image_url == "https://img.test/1.png"
        assert store.get("s2").status == SceneStatus.DRAFT

    def test_generate_scene_video_replaces_existing(self, clock):
        done = ready_scene("s1", generated_video_url=_video_url("old"))
        done.status = SceneStatus.VIDEO_READY
        video = ScriptedVideoService(default=[Completed(result_url=_video_url("new"))])
        store = InMemorySceneStore([done])

        outcome = asyncio.run(_orchestrator(store, clock, video=video).generate_scene_video("s1"))

        assert outcome.locator == _video_url("new")
        assert store.get("s1").generated_video_url == _video_url("new")

    def test_generate_scene_video_needs_an_image(self, clock):
        store = InMemorySceneStore([make_scene("s1")])
        outcome = asyncio.run(_orchestrator(store, clock).generate_scene_video("s1"))
        assert outcome.status == OutcomeStatus.SKIPPED
