"""Video job state model.

A job's state is one of a closed set of variants. Terminal variants carry the
data that makes them terminal: a result locator, a failure reason, or the
number of checks made before giving up.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class JobStatus(str, Enum):
    """Status of a video generation job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class Pending:
    status = JobStatus.PENDING


@dataclass(frozen=True)
class Processing:
    progress: Optional[float] = None
    status = JobStatus.PROCESSING


@dataclass(frozen=True)
class Completed:
    result_url: str
    progress: float = 100.0
    status = JobStatus.COMPLETED

    def __post_init__(self) -> None:
        if not self.result_url:
            raise ValueError("Completed job requires a result locator")


@dataclass(frozen=True)
class Failed:
    reason: str
    status = JobStatus.FAILED

    def __post_init__(self) -> None:
        if not self.reason:
            raise ValueError("Failed job requires an error message")


@dataclass(frozen=True)
class TimedOut:
    attempts: int
    status = JobStatus.TIMED_OUT


JobState = Union[Pending, Processing, Completed, Failed, TimedOut]

TERMINAL_STATES = (Completed, Failed, TimedOut)


@dataclass(frozen=True)
class Job:
    """A handle to a remote video generation operation and its last known state."""

    job_id: str
    state: JobState = Pending()

    @property
    def status(self) -> JobStatus:
        return self.state.status

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.state, TERMINAL_STATES)

    @property
    def result_url(self) -> Optional[str]:
        if isinstance(self.state, Completed):
            return self.state.result_url
        return None

    @property
    def error(self) -> Optional[str]:
        if isinstance(self.state, Failed):
            return self.state.reason
        return None

    @property
    def progress(self) -> Optional[float]:
        if isinstance(self.state, (Processing, Completed)):
            return self.state.progress
        return None

    def with_state(self, state: JobState) -> "Job":
        return Job(job_id=self.job_id, state=state)
