"""
Status reconciler for queue-mode jobs.

Polls the status provider on a fixed interval and merges its two
activity signals into one: a job is active while the worker runs OR
items are still queued. Only when both are false does the UI drop back
to idle and polling stop.
"""

from dataclasses import dataclass
from typing import Optional
import asyncio

from config.logging_config import get_logger
from config.constants import (
    JOB_TYPE_WORDPRESS,
    POLL_INTERVAL_SECONDS,
    POLL_SAFETY_TIMEOUT_SECONDS,
    REFRESH_DELAY_SECONDS,
)

from .collaborators import StatusProvider, StatusReport
from .events import JobEvents
from .exceptions import TransportError
from .job_state import ProgressSnapshot, UIState
from .stop_intent import StopIntentStore

logger = get_logger(__name__)

REFRESH_JOB_COMPLETED = "job_completed"
REFRESH_SAFETY_TIMEOUT = "safety_timeout"


@dataclass
class ReconcilerConfig:
    """Polling cadence and cutoff."""
    poll_interval: float = POLL_INTERVAL_SECONDS
    safety_timeout: float = POLL_SAFETY_TIMEOUT_SECONDS
    refresh_delay: float = REFRESH_DELAY_SECONDS

    @classmethod
    def from_settings(cls, settings, job_type: Optional[str] = None) -> "ReconcilerConfig":
        """WordPress content is polled on its own, shorter interval."""
        if (job_type or settings.job_type) == JOB_TYPE_WORDPRESS:
            poll_interval = settings.poll_interval_wordpress_seconds
        else:
            poll_interval = settings.poll_interval_seconds
        return cls(
            poll_interval=poll_interval,
            safety_timeout=settings.poll_safety_timeout_seconds,
            refresh_delay=settings.refresh_delay_seconds,
        )


@dataclass
class ReconciledStatus:
    """One tick's merged view. Never written back into JobState."""
    worker_active: bool
    queue_non_empty: bool
    previous_effective_active: bool
    processed: int = 0
    total: Optional[int] = None
    pending_items: int = 0
    credits_remaining: Optional[int] = None

    @property
    def effective_active(self) -> bool:
        return self.worker_active or self.queue_non_empty

    @property
    def falling_edge(self) -> bool:
        return self.previous_effective_active and not self.effective_active


class StatusReconciler:
    """
    Fixed-interval observer of server-side job state.

    Usage:
        reconciler = StatusReconciler(backend, stop_intents, events, "forum_topics")
        reconciler.start_polling()
        ...
        reconciler.stop_polling()
    """

    def __init__(
        self,
        provider: StatusProvider,
        stop_intents: StopIntentStore,
        events: JobEvents,
        job_type: str,
        job_id: Optional[str] = None,
        config: Optional[ReconcilerConfig] = None,
    ):
        self.provider = provider
        self.stop_intents = stop_intents
        self.events = events
        self.job_type = job_type
        self.job_id = job_id or job_type
        self.config = config or ReconcilerConfig()

        self._task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._previous_effective_active = False
        self.last_status: Optional[ReconciledStatus] = None

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_refresh(self) -> Optional[asyncio.Task]:
        return self._refresh_task

    def start_polling(self, assume_active: bool = False, job_id: Optional[str] = None) -> bool:
        """
        Start the poll loop. A second call while polling is a no-op.

        Args:
            assume_active: Seed the previous-tick signal as active so a job
                that drains before the first tick still triggers the refresh
            job_id: Job to observe from now on

        Returns:
            True if a new loop was started
        """
        if self.is_polling:
            return False

        if job_id:
            self.job_id = job_id
        if assume_active:
            self._previous_effective_active = True

        self._generation += 1
        self._task = asyncio.create_task(self._poll_loop(self._generation))
        logger.info(
            f"Polling started for {self.job_id} "
            f"(every {self.config.poll_interval}s, cutoff {self.config.safety_timeout}s)"
        )
        return True

    def stop_polling(self) -> bool:
        """
        Stop the poll loop. Safe to call when not polling.

        Any status response still in flight becomes stale and is discarded.

        Returns:
            True if a running loop was stopped
        """
        self._generation += 1
        if self._task is None:
            return False

        task = self._task
        self._task = None

        if task is not asyncio.current_task() and not task.done():
            task.cancel()

        logger.info(f"Polling stopped for {self.job_id}")
        return True

    async def tick(self) -> Optional[ReconciledStatus]:
        """Run one poll outside the loop (initial check, CLI status)."""
        return await self._tick(self._generation)

    async def _poll_loop(self, generation: int):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.safety_timeout

        while generation == self._generation:
            await self._tick(generation)
            if generation != self._generation:
                break

            await asyncio.sleep(self.config.poll_interval)
            if generation != self._generation:
                break

            if loop.time() >= deadline:
                logger.warning(
                    f"Polling for {self.job_id} hit the {self.config.safety_timeout}s "
                    f"safety cutoff, forcing stop"
                )
                self.stop_polling()
                self._previous_effective_active = False
                self._schedule_refresh(REFRESH_SAFETY_TIMEOUT)
                break

    async def _tick(self, generation: int) -> Optional[ReconciledStatus]:
        try:
            report = await self.provider.get_status(self.job_id)
        except TransportError as e:
            logger.warning(f"Status poll failed for {self.job_id}: {e}")
            return None

        if generation != self._generation:
            logger.debug(f"Discarding stale status response for {self.job_id}")
            return None

        return self._apply(report)

    def _apply(self, report: StatusReport) -> ReconciledStatus:
        """Merge one status report into UI events."""
        status = ReconciledStatus(
            worker_active=report.worker_active,
            queue_non_empty=report.queue_non_empty,
            previous_effective_active=self._previous_effective_active,
            processed=report.processed,
            total=report.total,
            pending_items=report.pending_items,
            credits_remaining=report.credits_remaining,
        )
        self._previous_effective_active = status.effective_active
        self.last_status = status

        if status.effective_active:
            total = status.total if status.total is not None else status.processed + status.pending_items
            self.events.progress(ProgressSnapshot(
                processed=status.processed,
                total=total,
                remaining=status.pending_items,
            ))
            if self.stop_intents.is_set(self.job_type):
                self.events.state_changed(UIState.STOPPING)
            else:
                self.events.state_changed(UIState.PROCESSING)
            return status

        self.stop_intents.clear(self.job_type)
        self.events.state_changed(UIState.IDLE)
        self.stop_polling()

        if status.falling_edge:
            logger.info(f"Job {self.job_id} drained ({status.processed} indexed)")
            self._schedule_refresh(REFRESH_JOB_COMPLETED)

        return status

    def _schedule_refresh(self, reason: str):
        self._refresh_task = asyncio.create_task(self._delayed_refresh(reason))

    async def _delayed_refresh(self, reason: str):
        await asyncio.sleep(self.config.refresh_delay)
        self.events.refresh(reason)
