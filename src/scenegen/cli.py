"""CLI entry point for the scene media generator."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import List, Optional

import typer

from . import __version__
from .config import config
from .errors import PipelineError
from .models import BatchProgress, BatchReport, OutcomeStatus, SceneStatus, Storyboard
from .prompts import VisualStyle, compile_prompt

app = typer.Typer(
    name="scenegen",
    help="Generate images and videos for storyboard scenes",
    no_args_is_help=True
)

STATUS_ICONS = {
    SceneStatus.DRAFT: "📝",
    SceneStatus.IMAGE_GENERATING: "⏳",
    SceneStatus.IMAGE_READY: "🖼️ ",
    SceneStatus.VIDEO_GENERATING: "⏳",
    SceneStatus.VIDEO_READY: "✅",
}

OUTCOME_ICONS = {
    OutcomeStatus.SUCCEEDED: "✅",
    OutcomeStatus.DEGRADED: "⚠️ ",
    OutcomeStatus.FAILED: "❌",
    OutcomeStatus.TIMED_OUT: "⌛",
    OutcomeStatus.CANCELLED: "⏹️ ",
    OutcomeStatus.SKIPPED: "⏭️ ",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"scenegen version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    )
) -> None:
    """Scene Media Generator - turn storyboard scenes into images and videos."""
    pass


def _load_storyboard(path: Path) -> Storyboard:
    if not path.exists():
        typer.echo(f"❌ No storyboard found at {path}")
        raise typer.Exit(1)
    try:
        storyboard = Storyboard.from_yaml(path)
        storyboard.validate_scenes()
        return storyboard
    except Exception as e:
        typer.echo(f"❌ Error loading storyboard: {e}")
        raise typer.Exit(1)


@app.command()
def status(
    storyboard_path: Path = typer.Option(
        Path("storyboard.yaml"),
        "--storyboard",
        "-s",
        help="Path to storyboard YAML file",
    )
) -> None:
    """Show scene generation status."""
    storyboard = _load_storyboard(storyboard_path)

    typer.echo(f"📁 Project: {storyboard.project_name}")
    typer.echo(f"   Visual style: {storyboard.visual_style}")
    typer.echo(f"   Aspect ratio: {storyboard.aspect_ratio}")
    typer.echo(f"   Scenes: {len(storyboard.scenes)}")
    typer.echo(f"   Total duration: {storyboard.total_duration:.1f}s")

    with_images = sum(1 for scene in storyboard.scenes if scene.has_image)
    with_videos = sum(1 for scene in storyboard.scenes if scene.status == SceneStatus.VIDEO_READY)
    typer.echo(f"   Images: {with_images}/{len(storyboard.scenes)}")
    typer.echo(f"   Videos: {with_videos}/{len(storyboard.scenes)}")

    typer.echo("\n📽️  Scenes:")
    for scene in storyboard.scenes:
        icon = STATUS_ICONS[scene.status]
        marker = " (placeholder image)" if scene.image_is_placeholder else ""
        typer.echo(f"   {icon} {scene.id} [{scene.label.value}] {scene.status.value}{marker}")
        if scene.last_error:
            typer.echo(f"      ⚠️  {scene.last_error}")


@app.command()
def prompt(
    storyboard_path: Path = typer.Option(
        Path("storyboard.yaml"),
        "--storyboard",
        "-s",
        help="Path to storyboard YAML file",
    ),
    style: Optional[VisualStyle] = typer.Option(
        None,
        "--style",
        help="Visual style (defaults to the storyboard's style)"
    ),
    scene_id: Optional[str] = typer.Option(
        None,
        "--scene",
        help="Only show the prompt for this scene"
    ),
) -> None:
    """Show the image prompts that would be sent for each scene."""
    storyboard = _load_storyboard(storyboard_path)
    chosen = style or storyboard.visual_style

    scenes = storyboard.scenes
    if scene_id:
        scenes = [scene for scene in scenes if scene.id == scene_id]
        if not scenes:
            typer.echo(f"❌ Scene not found: {scene_id}")
            raise typer.Exit(1)

    for scene in scenes:
        typer.echo(f"🎨 {scene.id} [{scene.label.value}]")
        typer.echo(f"   {compile_prompt(scene, chosen)}")


def _build_orchestrator(
    storyboard_path: Path,
    style: Optional[VisualStyle],
    parallel: int,
    offline: bool,
    skip_placeholders: bool,
    images_only: bool = False,
):
    from .orchestrator import BatchOrchestrator
    from .services import HttpImageService, ImageClient, JobPoller, build_video_service
    from .store import YamlSceneStore

    store = YamlSceneStore(storyboard_path)
    storyboard = store.storyboard

    video_service = build_video_service(config, offline=offline or images_only)
    poller = JobPoller(
        video_service,
        interval=config.poll_interval,
        max_attempts=config.max_poll_attempts,
    )
    return BatchOrchestrator(
        store=store,
        image_client=ImageClient(HttpImageService(config.image_service_url)),
        video_service=video_service,
        poller=poller,
        style=style or storyboard.visual_style,
        aspect_ratio=storyboard.aspect_ratio,
        max_concurrency=parallel,
        skip_placeholder_videos=skip_placeholders,
    )


def _print_progress(progress: BatchProgress) -> None:
    if progress.job_progress is not None:
        typer.echo(
            f"   … {progress.phase.value} {progress.current}/{progress.total} "
            f"({progress.scene_id}: {progress.job_progress:.0f}%)"
        )
    elif progress.scene_id:
        typer.echo(f"   {progress.phase.value} {progress.current}/{progress.total} complete")


def _execute(
    phase: str,
    storyboard_path: Path,
    style: Optional[VisualStyle],
    regenerate: Optional[List[str]],
    parallel: int,
    offline: bool,
    skip_placeholders: bool,
    report_path: Optional[Path],
    verbose: bool,
) -> None:
    setup_logging(verbose)
    _load_storyboard(storyboard_path)

    if phase != "images" and not offline and config.offline:
        typer.echo("⚠️  KLING_API_KEY not set - using offline video simulation")

    try:
        orchestrator = _build_orchestrator(
            storyboard_path, style, parallel, offline, skip_placeholders,
            images_only=phase == "images",
        )
    except (ValueError, PipelineError) as e:
        typer.echo(f"❌ Configuration error: {e}")
        raise typer.Exit(1)

    typer.echo(f"🎬 Generating {phase} for {storyboard_path} ({orchestrator.style.value} style)")

    async def go() -> BatchReport:
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel.set)
        except (NotImplementedError, RuntimeError):
            pass

        kwargs = {"regenerate": regenerate or [], "on_progress": _print_progress, "cancel": cancel}
        if phase == "images":
            return await orchestrator.generate_images(**kwargs)
        if phase == "videos":
            return await orchestrator.generate_videos(**kwargs)
        return await orchestrator.run(**kwargs)

    try:
        report = asyncio.run(go())
    except PipelineError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)

    if report_path:
        report.save(report_path)
        typer.echo(f"\n📄 Report saved: {report_path}")

    typer.echo("\n📊 Summary:")
    for outcome in report.outcomes:
        if outcome.status == OutcomeStatus.SKIPPED:
            continue
        icon = OUTCOME_ICONS[outcome.status]
        detail = outcome.error if not outcome.ok or outcome.status == OutcomeStatus.DEGRADED else outcome.locator
        typer.echo(f"   {icon} {outcome.phase.value} {outcome.scene_id}: {detail}")

    failed = len(report.failures)
    degraded = report.count(OutcomeStatus.DEGRADED)
    if degraded:
        typer.echo(f"\n⚠️  {degraded} scene(s) received placeholder images")
    if failed:
        typer.echo(f"\n⚠️  {failed} scene(s) failed to generate")
        raise typer.Exit(1)
    typer.echo("\n✅ Done")


def _storyboard_option() -> Path:
    return typer.Option(
        Path("storyboard.yaml"),
        "--storyboard",
        "-s",
        help="Path to storyboard YAML file",
    )


def _style_option() -> Optional[VisualStyle]:
    return typer.Option(None, "--style", help="Visual style (defaults to the storyboard's style)")


def _regenerate_option() -> Optional[List[str]]:
    return typer.Option(None, "--regenerate", "-r", help="Scene id to generate again (repeatable)")


def _parallel_option() -> int:
    return typer.Option(
        config.max_concurrency, "--parallel", "-p", help="Scenes processed at once", min=1, max=10
    )


def _offline_option() -> bool:
    return typer.Option(False, "--offline", help="Simulate video jobs instead of calling Kling")


def _skip_placeholders_option() -> bool:
    return typer.Option(
        False, "--skip-placeholders", help="Do not animate scenes that only have placeholder images"
    )


def _report_option() -> Optional[Path]:
    return typer.Option(None, "--report", help="Write a JSON batch report to this path")


def _verbose_option() -> bool:
    return typer.Option(False, "--verbose", "-v", help="Enable verbose logging")


@app.command()
def images(
    storyboard_path: Path = _storyboard_option(),
    style: Optional[VisualStyle] = _style_option(),
    regenerate: Optional[List[str]] = _regenerate_option(),
    parallel: int = _parallel_option(),
    report_path: Optional[Path] = _report_option(),
    verbose: bool = _verbose_option(),
) -> None:
    """Generate images for scenes that do not have one yet."""
    _execute("images", storyboard_path, style, regenerate, parallel, False, False, report_path, verbose)


@app.command()
def videos(
    storyboard_path: Path = _storyboard_option(),
    regenerate: Optional[List[str]] = _regenerate_option(),
    parallel: int = _parallel_option(),
    offline: bool = _offline_option(),
    skip_placeholders: bool = _skip_placeholders_option(),
    report_path: Optional[Path] = _report_option(),
    verbose: bool = _verbose_option(),
) -> None:
    """Generate videos for scenes whose image is ready."""
    _execute("videos", storyboard_path, None, regenerate, parallel, offline, skip_placeholders, report_path, verbose)


@app.command()
def generate(
    storyboard_path: Path = _storyboard_option(),
    style: Optional[VisualStyle] = _style_option(),
    regenerate: Optional[List[str]] = _regenerate_option(),
    parallel: int = _parallel_option(),
    offline: bool = _offline_option(),
    skip_placeholders: bool = _skip_placeholders_option(),
    report_path: Optional[Path] = _report_option(),
    verbose: bool = _verbose_option(),
) -> None:
    """Generate images, then videos, for the whole storyboard."""
    _execute("media", storyboard_path, style, regenerate, parallel, offline, skip_placeholders, report_path, verbose)


if __name__ == "__main__":
    app()
