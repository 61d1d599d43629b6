"""
Collaborator interfaces consumed by the orchestrator.

The batch executor and the status provider live outside this package
(usually behind HTTP, see http_backend.py). Only their shapes are defined here.
"""

from dataclasses import dataclass, field
from typing import Protocol, Optional, List, Dict, Any


@dataclass
class JobTicket:
    """Answer to a start request: the server has enqueued the work."""
    job_id: str
    total: int
    batch_size: int
    credits_available: Optional[int] = None
    credits_needed: Optional[int] = None
    message: str = ""

    @property
    def will_complete(self) -> bool:
        """Whether available credits cover the whole job (unknown counts as yes)."""
        if self.credits_available is None or self.credits_needed is None:
            return True
        return self.credits_available >= self.credits_needed


@dataclass
class BatchResponse:
    """Result of one executor call."""
    processed: int = 0
    remaining: int = 0
    done: bool = False
    errors: List[str] = field(default_factory=list)
    credits_exhausted: bool = False
    credits_remaining: Optional[int] = None
    waiting: bool = False  # another worker holds the processing lock


@dataclass
class StatusReport:
    """Snapshot reported by the status provider."""
    worker_active: bool = False
    queue_non_empty: bool = False
    processed: int = 0
    total: Optional[int] = None
    pending_items: int = 0
    credits_remaining: Optional[int] = None


@dataclass
class ActiveJobInfo:
    """Answer to "is there an active job of this type?"."""
    active: bool
    total: int = 0
    processed: int = 0
    remaining: int = 0
    started_at: Optional[float] = None  # epoch seconds, server clock
    batch_size: Optional[int] = None
    job_id: Optional[str] = None


class BatchExecutor(Protocol):
    """
    Processes bounded slices of pending work.

    execute_batch must be safe to call again after a transient failure;
    the executor, not the caller, guards against double counting.
    """

    async def start_job(
        self,
        job_type: str,
        batch_size: int,
        options: Dict[str, Any],
    ) -> JobTicket:
        """
        Enqueue all pending work items for a job type.

        Raises:
            TransportError: network-level failure
            BatchRejectedError: the server refused to start
        """
        ...

    async def execute_batch(
        self,
        job_id: str,
        batch_size: int,
        options: Dict[str, Any],
    ) -> BatchResponse:
        """
        Process one slice.

        Raises:
            TransportError: network-level failure
            BatchRejectedError: the server refused the call
        """
        ...

    async def request_stop(self, job_id: str) -> int:
        """Best-effort removal of the server-side remainder. Returns items cleared."""
        ...


class StatusProvider(Protocol):
    """Cheap, side-effect-free view of server-side job state."""

    async def get_status(self, job_id: str) -> StatusReport:
        ...

    async def get_active_job(self, job_type: str) -> ActiveJobInfo:
        ...
