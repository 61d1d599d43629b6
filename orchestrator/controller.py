"""
Client-stepped batch loop.

Drives the batch executor one slice at a time, merges the reported
counts into the live JobState and decides after every step whether to
continue, retry, or finish.
"""

from dataclasses import dataclass
from typing import Optional
import asyncio

from config.logging_config import get_logger
from config.constants import (
    BATCH_DELAY_SECONDS,
    BATCH_RETRY_DELAY_SECONDS,
    NETWORK_RETRY_DELAY_SECONDS,
    NETWORK_RETRY_MAX_DELAY_SECONDS,
    MAX_CONSECUTIVE_REJECTIONS,
    REFRESH_DELAY_SECONDS,
    INSUFFICIENT_CREDITS_MESSAGE,
)

from .collaborators import BatchExecutor
from .events import JobEvents
from .exceptions import (
    TransportError,
    BatchRejectedError,
    InvariantViolationError,
    JobAlreadyActiveError,
)
from .job_state import (
    JobState,
    JobStateStore,
    JobSummary,
    UIState,
    classify_outcome,
)

logger = get_logger(__name__)


@dataclass
class ControllerConfig:
    """Timing and retry policy of the batch loop."""
    batch_delay: float = BATCH_DELAY_SECONDS
    batch_retry_delay: float = BATCH_RETRY_DELAY_SECONDS
    network_retry_delay: float = NETWORK_RETRY_DELAY_SECONDS
    max_network_retry_delay: float = NETWORK_RETRY_MAX_DELAY_SECONDS
    max_consecutive_rejections: int = MAX_CONSECUTIVE_REJECTIONS
    refresh_delay: float = REFRESH_DELAY_SECONDS

    @classmethod
    def from_settings(cls, settings) -> "ControllerConfig":
        return cls(
            batch_delay=settings.batch_delay_seconds,
            batch_retry_delay=settings.batch_retry_delay_seconds,
            network_retry_delay=settings.network_retry_delay_seconds,
            max_network_retry_delay=settings.network_retry_max_delay_seconds,
            max_consecutive_rejections=settings.max_consecutive_rejections,
            refresh_delay=settings.refresh_delay_seconds,
        )


class JobController:
    """
    Runs the batch loop for one job type.

    Loop contract:
    - the stop flag is checked before every executor call
    - at most one executor call is outstanding at any time
    - transport failures and rejected batches are logged into the job's
      error list and retried while work remains; transport failures back
      off but never end the job, rejections have a budget
    - credit exhaustion ends the job immediately

    Usage:
        controller = JobController(executor, store, events)
        controller.start(state)
        summary = await controller.wait()
    """

    def __init__(
        self,
        executor: BatchExecutor,
        store: JobStateStore,
        events: JobEvents,
        config: Optional[ControllerConfig] = None,
    ):
        self.executor = executor
        self.store = store
        self.events = events
        self.config = config or ControllerConfig()

        self._state: Optional[JobState] = None
        self._task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._in_flight = False
        self._transport_failures = 0
        self._consecutive_rejections = 0
        self.last_summary: Optional[JobSummary] = None

    @property
    def state(self) -> Optional[JobState]:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_refresh(self) -> Optional[asyncio.Task]:
        """The delayed refresh scheduled by the last finish, if any."""
        return self._refresh_task

    def start(self, state: JobState) -> asyncio.Task:
        """
        Attach the loop to a fresh or reconstructed job state.

        Raises:
            JobAlreadyActiveError: a loop is already running
        """
        if self.is_running:
            raise JobAlreadyActiveError(state.job_type)

        self._state = state
        self._transport_failures = 0
        self._consecutive_rejections = 0
        self.events.state_changed(UIState.PROCESSING)
        self.events.progress(state.snapshot())

        self._task = asyncio.create_task(self._run(state))
        return self._task

    def resume(self, state: JobState) -> asyncio.Task:
        """Re-attach to a job found active on the server; counting continues from state.processed."""
        logger.info(
            f"Resuming job {state.job_id} at {state.processed}/{state.total} "
            f"(batch {state.batch_size})"
        )
        return self.start(state)

    def request_stop(self) -> bool:
        """
        Ask the loop to stop at its next checkpoint.

        Returns:
            True if the flag was newly set
        """
        if self._state is None:
            return False
        changed = self._state.request_stop()
        if changed:
            logger.info(f"Stop requested for job {self._state.job_id}")
        return changed

    async def wait(self) -> Optional[JobSummary]:
        """Wait for the running loop and return its summary."""
        if self._task is None:
            return self.last_summary
        return await self._task

    def detach(self) -> Optional[asyncio.Task]:
        """
        Abandon the loop without finishing the job.

        The server keeps its queue; a later resume check re-attaches.

        Returns:
            The cancelled loop task, if one was running
        """
        task = self._task if self.is_running else None
        if task is not None:
            task.cancel()
        if self._state is not None:
            self.store.discard(self._state)
            self._state = None
        return task

    async def _run(self, state: JobState) -> JobSummary:
        """Loop until done, exhausted, stopped or out of retries."""
        logger.info(f"Batch loop started: {state.job_id} ({state.total} items)")
        try:
            while True:
                if state.stop_requested:
                    logger.info(f"Job {state.job_id}: stop observed, no further batches")
                    break

                delay = await self._step(state)
                if delay is None:
                    break

                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.info(f"Job {state.job_id} detached at {state.processed}/{state.total}")
            self.store.discard(state)
            self._state = None
            raise

        return self._finish(state)

    async def _step(self, state: JobState) -> Optional[float]:
        """
        Run one batch.

        Returns:
            Delay before the next step, or None if the job should finish
        """
        if self._in_flight:
            raise InvariantViolationError(f"Job {state.job_id}: overlapping batch call")

        self._in_flight = True
        try:
            response = await self.executor.execute_batch(
                state.job_id,
                state.batch_size,
                state.options,
            )
        except TransportError as e:
            return self._on_transport_error(state, e)
        except BatchRejectedError as e:
            return self._on_rejected(state, str(e) or "Batch processing failed")
        finally:
            self._in_flight = False

        if state.frozen or state is not self._state:
            logger.debug(f"Job {state.job_id}: discarding response for a finished job")
            return None

        if response.waiting:
            logger.debug(f"Job {state.job_id}: another worker holds the lock, waiting")
            return self.config.batch_retry_delay

        if response.credits_exhausted:
            state.apply_counts(response.processed, response.remaining)
            state.add_error(INSUFFICIENT_CREDITS_MESSAGE)
            state.mark_exhausted()
            logger.warning(
                f"Job {state.job_id}: credits exhausted at {state.processed}/{state.total}"
            )
            self.events.progress(state.snapshot())
            return None

        self._transport_failures = 0
        self._consecutive_rejections = 0
        state.apply_counts(response.processed, response.remaining, done=response.done)
        if response.errors:
            state.add_errors(response.errors)

        logger.debug(
            f"Job {state.job_id}: batch done, {state.processed}/{state.total} "
            f"({state.remaining} remaining, {len(response.errors)} item errors)"
        )
        self.events.progress(state.snapshot())

        if response.done:
            return None
        return self.config.batch_delay

    def _on_transport_error(self, state: JobState, error: TransportError) -> Optional[float]:
        """
        Record a network failure and back off.

        Never ends the job while work remains; the delay doubles per
        consecutive failure up to max_network_retry_delay.
        """
        self._transport_failures += 1
        message = f"Network error: {error}"
        state.add_error(message)
        self.events.progress(state.snapshot())

        if state.remaining <= 0:
            logger.warning(f"Job {state.job_id}: {message} (nothing remaining, finishing)")
            return None

        exponent = min(self._transport_failures - 1, 10)
        delay = min(
            self.config.network_retry_delay * 2 ** exponent,
            self.config.max_network_retry_delay,
        )
        logger.warning(
            f"Job {state.job_id}: {message} "
            f"(attempt {self._transport_failures}, retrying in {delay:.1f}s)"
        )
        return delay

    def _on_rejected(self, state: JobState, message: str) -> Optional[float]:
        """Record a refused batch; retry while work remains and the rejection budget allows."""
        self._consecutive_rejections += 1
        state.add_error(message)
        logger.warning(
            f"Job {state.job_id}: {message} "
            f"(rejection {self._consecutive_rejections}/{self.config.max_consecutive_rejections})"
        )
        self.events.progress(state.snapshot())

        if state.remaining <= 0:
            return None
        if self._consecutive_rejections >= self.config.max_consecutive_rejections:
            logger.error(
                f"Job {state.job_id}: giving up after "
                f"{self._consecutive_rejections} rejected batches"
            )
            return None
        return self.config.batch_retry_delay

    def _finish(self, state: JobState) -> JobSummary:
        """Freeze the state, classify, report, and schedule the downstream refresh."""
        state.freeze()
        outcome = classify_outcome(state)

        summary = JobSummary(
            job_id=state.job_id,
            job_type=state.job_type,
            outcome=outcome,
            processed=state.processed,
            total=state.total,
            remaining=state.remaining,
            elapsed_ms=state.elapsed_ms(),
            errors=tuple(state.errors),
        )

        logger.info(
            f"Job finished: {state.job_id} {outcome.value} "
            f"({state.processed}/{state.total}, {summary.elapsed_text}, "
            f"{len(state.errors)} errors)"
        )

        self.events.progress(state.snapshot())
        self.events.final_summary(summary)
        self.events.state_changed(outcome.ui_state)

        self.store.discard(state)
        self._state = None
        self.last_summary = summary
        self._refresh_task = asyncio.create_task(self._delayed_refresh())

        return summary

    async def _delayed_refresh(self):
        """Let the executor's storage settle, then ask for one aggregate refresh."""
        await asyncio.sleep(self.config.refresh_delay)
        self.events.refresh("job_finished")
