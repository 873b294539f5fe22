"""Data models for the scene media pipeline."""

from .scene import Scene, SceneLabel, SceneStatus, ReferenceImage
from .storyboard import Storyboard
from .job import Job, JobStatus, JobState, Pending, Processing, Completed, Failed, TimedOut
from .batch import BatchProgress, BatchReport, OutcomeStatus, Phase, SceneOutcome

__all__ = [
    "Scene",
    "SceneLabel",
    "SceneStatus",
    "ReferenceImage",
    "Storyboard",
    "Job",
    "JobStatus",
    "JobState",
    "Pending",
    "Processing",
    "Completed",
    "Failed",
    "TimedOut",
    "BatchProgress",
    "BatchReport",
    "OutcomeStatus",
    "Phase",
    "SceneOutcome",
]
