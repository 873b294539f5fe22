"""External service integrations."""

from typing import Optional

from ..config import Config, config as default_config
from .images import HttpImageService, ImageClient, ImageResult, ImageService, placeholder_url
from .kling import KlingVideoService, parse_job_state
from .offline import OFFLINE_JOB_PREFIX, OfflineVideoService, is_offline_job
from .poller import JobPoller
from .video import VideoJobSubmitter, VideoRequest, VideoService


def build_video_service(cfg: Optional[Config] = None, offline: bool = False) -> VideoService:
    """Return the live Kling service, or the offline simulator without credentials."""
    cfg = cfg or default_config
    simulator = OfflineVideoService(threshold=cfg.offline_threshold)
    if offline or cfg.offline:
        return simulator
    cfg.validate_video_required()
    return KlingVideoService(
        api_key=cfg.kling_api_key,
        api_base=cfg.kling_api_base,
        offline=simulator,
    )


__all__ = [
    "HttpImageService",
    "ImageClient",
    "ImageResult",
    "ImageService",
    "placeholder_url",
    "KlingVideoService",
    "parse_job_state",
    "OFFLINE_JOB_PREFIX",
    "OfflineVideoService",
    "is_offline_job",
    "JobPoller",
    "VideoJobSubmitter",
    "VideoRequest",
    "VideoService",
    "build_video_service",
]
