"""
Job state and lifecycle.
Holds the orchestrator's view of an in-flight indexing job and the
store that guarantees at most one live job per job type.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime

from config.logging_config import get_logger
from config.constants import BATCH_SIZE_DEFAULT

from .collaborators import ActiveJobInfo
from .exceptions import JobAlreadyActiveError, FrozenJobStateError

logger = get_logger(__name__)


class ExecutionMode(Enum):
    """How batches are driven."""
    CLIENT_STEPPED = "client_stepped"  # this process issues every batch call
    QUEUE = "queue"                    # a background worker runs batches; we only observe


class UIState(Enum):
    """State reported to the UI collaborator."""
    IDLE = "idle"
    PROCESSING = "processing"
    STOPPING = "stopping"
    FINISHED = "finished"
    EXHAUSTED = "exhausted"


class JobOutcome(Enum):
    """Terminal classification of a job."""
    SUCCESS = "success"
    SUCCESS_WITH_ERRORS = "success_with_errors"
    INCOMPLETE = "incomplete"
    STOPPED = "stopped"
    EXHAUSTED = "exhausted"

    @property
    def ui_state(self) -> UIState:
        if self is JobOutcome.EXHAUSTED:
            return UIState.EXHAUSTED
        if self is JobOutcome.STOPPED:
            # Server-side draining may continue; the reconciler resolves it to idle
            return UIState.STOPPING
        return UIState.FINISHED


@dataclass
class JobConfig:
    """Parameters of a new job."""
    batch_size: int = BATCH_SIZE_DEFAULT
    images_only: bool = False
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    def executor_options(self) -> Dict[str, Any]:
        """Options forwarded on every executor call."""
        opts = dict(self.options)
        if self.images_only:
            opts["images_only"] = True
        return opts


@dataclass
class ProgressSnapshot:
    """Values pushed to progress listeners."""
    processed: int
    total: int
    remaining: int
    errors_count: int = 0

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(1.0, self.processed / self.total)


@dataclass
class JobSummary:
    """Final report of a finished job."""
    job_id: str
    job_type: str
    outcome: JobOutcome
    processed: int
    total: int
    remaining: int
    elapsed_ms: int
    errors: Tuple[str, ...] = ()

    @property
    def elapsed_text(self) -> str:
        """Elapsed time as '3m 12s' or '45s'."""
        elapsed_seconds = round(self.elapsed_ms / 1000)
        minutes, seconds = divmod(elapsed_seconds, 60)
        return f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"

    @property
    def headline(self) -> str:
        """One-line, user-facing description of the outcome."""
        if self.outcome is JobOutcome.EXHAUSTED:
            return (
                f"Indexing stopped - insufficient credits "
                f"({self.processed} of {self.total} indexed)"
            )
        if self.outcome is JobOutcome.STOPPED:
            return f"Indexing stopped by user ({self.processed} of {self.total} indexed)"
        if self.outcome is JobOutcome.INCOMPLETE:
            progress = f"({self.processed} of {self.total} indexed in {self.elapsed_text})"
            if self.errors:
                return f"Indexing incomplete with {len(self.errors)} errors {progress}"
            return f"Indexing incomplete {progress}"
        if self.outcome is JobOutcome.SUCCESS_WITH_ERRORS:
            return (
                f"Indexing complete with {len(self.errors)} errors "
                f"({self.processed} of {self.total} in {self.elapsed_text})"
            )
        return f"Indexing complete: {self.processed} items in {self.elapsed_text}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job_type": self.job_type,
            "outcome": self.outcome.value,
            "processed": self.processed,
            "total": self.total,
            "remaining": self.remaining,
            "elapsed_ms": self.elapsed_ms,
            "errors": list(self.errors),
        }


@dataclass
class JobState:
    """
    Orchestrator-owned state of one live job.

    Counters are mutated only through the methods below so the
    invariants hold for every reachable state:
    - processed never decreases and never exceeds total
    - errors are append-only
    - stop_requested and credits_exhausted never go back to False
    - a frozen state rejects every mutation
    """
    job_id: str
    job_type: str
    total: int
    batch_size: int
    processed: int = 0
    remaining: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    stop_requested: bool = False
    credits_exhausted: bool = False
    options: Dict[str, Any] = field(default_factory=dict)
    finished_at: Optional[datetime] = None

    def __post_init__(self):
        if self.total < 0:
            raise ValueError(f"total must be >= 0, got {self.total}")
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        self.processed = max(0, min(self.processed, self.total))
        if self.remaining <= 0:
            self.remaining = self.total - self.processed

    @property
    def frozen(self) -> bool:
        return self.finished_at is not None

    def _check_mutable(self):
        if self.frozen:
            raise FrozenJobStateError(f"Job {self.job_id} is finished and read-only")

    def apply_counts(self, processed: int, remaining: int, done: bool = False):
        """
        Merge executor-reported counts.

        The executor is authoritative, but a report that would move
        processed backwards or past total is clamped. On a done answer
        processed is derived from total, since a drained queue answers
        with processed=0.
        """
        self._check_mutable()

        reported = min(max(processed, 0), self.total)
        if reported < self.processed:
            logger.debug(
                f"Job {self.job_id}: ignoring regressive processed={processed} "
                f"(have {self.processed})"
            )
        else:
            self.processed = reported

        self.remaining = max(remaining, 0)
        if done:
            self.processed = max(self.processed, self.total - self.remaining)

    def add_error(self, message: str):
        self._check_mutable()
        self.errors.append(message)

    def add_errors(self, messages: List[str]):
        self._check_mutable()
        self.errors.extend(messages)

    def request_stop(self) -> bool:
        """
        Set the stop flag.

        Returns:
            True if this call changed the flag, False if it was already set
            or the job is already finished
        """
        if self.frozen or self.stop_requested:
            return False
        self.stop_requested = True
        return True

    def mark_exhausted(self):
        self._check_mutable()
        self.credits_exhausted = True

    def freeze(self):
        """Make the state read-only; called once when the job finishes."""
        if not self.frozen:
            self.finished_at = datetime.now()

    def elapsed_ms(self) -> int:
        end = self.finished_at or datetime.now()
        return max(0, int((end - self.started_at).total_seconds() * 1000))

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            processed=self.processed,
            total=self.total,
            remaining=self.remaining,
            errors_count=len(self.errors),
        )


def classify_outcome(state: JobState) -> JobOutcome:
    """
    Classify a finished job.

    Exhaustion wins over everything, then an explicit user stop; errors
    with unfinished work mean incomplete, errors with all work done mean
    success with errors.
    """
    if state.credits_exhausted:
        return JobOutcome.EXHAUSTED
    if state.stop_requested:
        return JobOutcome.STOPPED
    if state.errors:
        if state.processed < state.total:
            return JobOutcome.INCOMPLETE
        return JobOutcome.SUCCESS_WITH_ERRORS
    if state.processed >= state.total:
        return JobOutcome.SUCCESS
    return JobOutcome.INCOMPLETE


class JobStateStore:
    """
    Registry of live job states, one per job type.

    Usage:
        store = JobStateStore()
        state = store.create("forum_topics", job_id="forum_topics", total=100, batch_size=10)
        ...
        store.discard(state)
    """

    def __init__(self):
        self._states: Dict[str, JobState] = {}

    def get(self, job_type: str) -> Optional[JobState]:
        return self._states.get(job_type)

    def is_live(self, job_type: str) -> bool:
        return job_type in self._states

    def create(
        self,
        job_type: str,
        job_id: str,
        total: int,
        batch_size: int,
        options: Optional[Dict[str, Any]] = None,
    ) -> JobState:
        """
        Create the state of a fresh job.

        Raises:
            JobAlreadyActiveError: a job of this type is already live
        """
        if job_type in self._states:
            raise JobAlreadyActiveError(job_type)

        state = JobState(
            job_id=job_id,
            job_type=job_type,
            total=total,
            batch_size=batch_size,
            options=dict(options or {}),
        )
        self._states[job_type] = state
        logger.debug(f"JobState created: {job_id} ({total} items, batch {batch_size})")
        return state

    def reconstruct(
        self,
        job_type: str,
        info: ActiveJobInfo,
        batch_size: int = BATCH_SIZE_DEFAULT,
        options: Optional[Dict[str, Any]] = None,
    ) -> JobState:
        """
        Rebuild the state of a job the server reports as active.

        Raises:
            JobAlreadyActiveError: a job of this type is already live
        """
        if job_type in self._states:
            raise JobAlreadyActiveError(job_type)

        total = max(info.total, info.processed + info.remaining, 0)
        started_at = (
            datetime.fromtimestamp(info.started_at)
            if info.started_at
            else datetime.now()
        )
        state = JobState(
            job_id=info.job_id or job_type,
            job_type=job_type,
            total=total,
            batch_size=info.batch_size or batch_size,
            processed=info.processed,
            remaining=info.remaining,
            started_at=started_at,
            options=dict(options or {}),
        )
        self._states[job_type] = state
        logger.debug(
            f"JobState reconstructed: {state.job_id} "
            f"({state.processed}/{state.total}, started {started_at.isoformat()})"
        )
        return state

    def discard(self, state: JobState) -> bool:
        """Drop a state; a newer state of the same job type is left alone."""
        if self._states.get(state.job_type) is state:
            del self._states[state.job_type]
            return True
        return False
