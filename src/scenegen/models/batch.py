"""Batch progress and report models."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Batch generation phase."""
    IMAGE = "image"
    VIDEO = "video"


class OutcomeStatus(str, Enum):
    """What happened to one scene in one phase."""
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BatchProgress:
    """Aggregate progress of the running phase.

    ``job_progress`` is the remote service's own percentage for the scene
    currently being polled and is informational only.
    """

    current: int
    total: int
    phase: Phase
    scene_id: Optional[str] = None
    job_progress: Optional[float] = None

    @property
    def fraction(self) -> float:
        if self.total == 0:
            return 1.0
        return self.current / self.total


@dataclass
class SceneOutcome:
    """Result or error for one scene in one phase."""

    scene_id: str
    phase: Phase
    status: OutcomeStatus
    locator: Optional[str] = None
    error: Optional[str] = None
    job_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.DEGRADED)


@dataclass
class BatchReport:
    """Per-scene outcomes of a batch run."""

    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    outcomes: list[SceneOutcome] = field(default_factory=list)
    progress: dict[Phase, BatchProgress] = field(default_factory=dict)

    def add(self, outcome: SceneOutcome) -> None:
        self.outcomes.append(outcome)

    def merge(self, other: "BatchReport") -> None:
        self.outcomes.extend(other.outcomes)
        self.progress.update(other.progress)
        self.completed_at = other.completed_at or self.completed_at

    def for_phase(self, phase: Phase) -> list[SceneOutcome]:
        return [o for o in self.outcomes if o.phase == phase]

    def outcome(self, scene_id: str, phase: Phase) -> Optional[SceneOutcome]:
        for o in self.outcomes:
            if o.scene_id == scene_id and o.phase == phase:
                return o
        return None

    def count(self, status: OutcomeStatus, phase: Optional[Phase] = None) -> int:
        return sum(
            1 for o in self.outcomes
            if o.status == status and (phase is None or o.phase == phase)
        )

    @property
    def failures(self) -> list[SceneOutcome]:
        return [
            o for o in self.outcomes
            if o.status in (OutcomeStatus.FAILED, OutcomeStatus.TIMED_OUT)
        ]

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "progress": {
                phase.value: {"current": p.current, "total": p.total}
                for phase, p in self.progress.items()
            },
            "summary": {s.value: self.count(s) for s in OutcomeStatus},
            "outcomes": [
                {
                    "scene_id": o.scene_id,
                    "phase": o.phase.value,
                    "status": o.status.value,
                    "locator": o.locator,
                    "error": o.error,
                    "job_id": o.job_id,
                }
                for o in self.outcomes
            ],
        }

    def save(self, output_path: Path) -> None:
        """Save the report to a JSON file.

        Args:
            output_path: Path to save the report JSON.
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Saved batch report to {output_path}")
