"""
Indexing manager - one facade per job type.

Wires the job state store, batch loop, status poller and resume guard
together and serializes check_and_resume() / start() / stop().
"""

from typing import Optional, Dict, Any, Set
from pathlib import Path
import asyncio

from config.logging_config import get_logger
from config.constants import DEFAULT_JOB_TYPE, STOP_INTENT_FILE

from .collaborators import BatchExecutor, StatusProvider
from .controller import JobController, ControllerConfig
from .events import JobEvents
from .exceptions import IndexingError, JobAlreadyActiveError, ResumeCheckPendingError
from .job_state import (
    ExecutionMode,
    JobConfig,
    JobOutcome,
    JobState,
    JobStateStore,
    JobSummary,
    UIState,
)
from .reconciler import StatusReconciler, ReconcilerConfig, REFRESH_SAFETY_TIMEOUT
from .resume_guard import ResumeGuard, ResumeResult, ResumeCheckState
from .stop_intent import StopIntentStore

logger = get_logger(__name__)


class IndexingManager:
    """
    Orchestrates indexing jobs of one type.

    Usage:
        manager = IndexingManager(backend, job_type="forum_topics", stop_intents=intents)
        await manager.check_and_resume()
        state = await manager.start(JobConfig(batch_size=10))
        summary = await manager.wait()
    """

    def __init__(
        self,
        executor: BatchExecutor,
        provider: Optional[StatusProvider] = None,
        job_type: str = DEFAULT_JOB_TYPE,
        mode: ExecutionMode = ExecutionMode.CLIENT_STEPPED,
        stop_intents: Optional[StopIntentStore] = None,
        store: Optional[JobStateStore] = None,
        events: Optional[JobEvents] = None,
        controller_config: Optional[ControllerConfig] = None,
        reconciler_config: Optional[ReconcilerConfig] = None,
        resume_batch_size: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.executor = executor
        self.provider = provider or executor
        self.job_type = job_type
        self.mode = mode
        self.options = dict(options or {})

        if stop_intents is None:
            from config.settings import settings
            stop_intents = StopIntentStore(Path(settings.state_dir) / STOP_INTENT_FILE)
        self.stop_intents = stop_intents

        self.store = store or JobStateStore()
        self.events = events or JobEvents()

        self.controller = JobController(
            self.executor,
            self.store,
            self.events,
            config=controller_config,
        )
        self.reconciler = StatusReconciler(
            self.provider,
            self.stop_intents,
            self.events,
            job_type,
            config=reconciler_config,
        )

        guard_kwargs = {"options": self.options}
        if resume_batch_size:
            guard_kwargs["batch_size"] = resume_batch_size
        self.guard = ResumeGuard(
            self.provider,
            self.store,
            self.controller,
            self.reconciler,
            self.stop_intents,
            self.events,
            job_type,
            mode=mode,
            **guard_kwargs,
        )

        self._starting = False
        self._background: Set[asyncio.Task] = set()

        self.events.add_callback(JobEvents.STATE, self._on_state_change)
        self.events.add_callback(JobEvents.SUMMARY, self._on_summary)
        self.events.add_callback(JobEvents.REFRESH, self._on_refresh)

    @classmethod
    def from_settings(cls, executor, settings, provider=None, **kwargs) -> "IndexingManager":
        """Build a manager from a Settings instance."""
        kwargs.setdefault("job_type", settings.job_type)
        kwargs.setdefault("mode", ExecutionMode(settings.execution_mode))
        kwargs.setdefault(
            "stop_intents",
            StopIntentStore(Path(settings.state_dir) / STOP_INTENT_FILE),
        )
        kwargs.setdefault("controller_config", ControllerConfig.from_settings(settings))
        kwargs.setdefault("reconciler_config", ReconcilerConfig.from_settings(settings, kwargs["job_type"]))
        kwargs.setdefault("resume_batch_size", settings.batch_size)
        kwargs.setdefault("options", settings.executor_options())
        return cls(executor, provider, **kwargs)

    @property
    def state(self) -> Optional[JobState]:
        return self.store.get(self.job_type)

    @property
    def ui_state(self) -> UIState:
        return self.events.state

    @property
    def is_active(self) -> bool:
        return (
            self._starting
            or self.store.is_live(self.job_type)
            or self.controller.is_running
            or self.reconciler.is_polling
        )

    async def check_and_resume(self) -> ResumeResult:
        """Startup check; must complete before start() is allowed."""
        return await self.guard.check_and_resume()

    async def start(self, config: Optional[JobConfig] = None) -> Optional[JobState]:
        """
        Start a new job.

        Returns:
            The live JobState, or None if there was nothing to index

        Raises:
            ResumeCheckPendingError: check_and_resume() has not completed
            JobAlreadyActiveError: a job of this type is live or starting
            TransportError / BatchRejectedError: the start request failed
        """
        config = config or JobConfig()

        if not self.guard.completed:
            raise ResumeCheckPendingError(self.job_type)
        if self.is_active:
            raise JobAlreadyActiveError(self.job_type)

        options = dict(self.options)
        options.update(config.executor_options())

        self._starting = True
        try:
            ticket = await self.executor.start_job(self.job_type, config.batch_size, options)
        finally:
            self._starting = False

        if ticket.total <= 0:
            logger.info(f"Nothing to index for {self.job_type}: {ticket.message or 'no pending items'}")
            self.events.state_changed(UIState.IDLE)
            return None

        if not ticket.will_complete:
            logger.warning(
                f"Insufficient credits for {self.job_type}: "
                f"{ticket.credits_available} available, {ticket.credits_needed} needed; "
                f"indexing will stop when credits run out"
            )

        self.stop_intents.clear(self.job_type)
        state = self.store.create(
            self.job_type,
            ticket.job_id,
            ticket.total,
            ticket.batch_size or config.batch_size,
            options,
        )
        logger.info(
            f"Job started: {state.job_id} ({state.total} items, batch {state.batch_size}, "
            f"mode {self.mode.value})"
        )

        if self.mode is ExecutionMode.CLIENT_STEPPED:
            self.controller.start(state)
        else:
            self.events.state_changed(UIState.PROCESSING)
            self.events.progress(state.snapshot())
            self.reconciler.start_polling(assume_active=True, job_id=state.job_id)

        return state

    def stop(self) -> bool:
        """
        Request a stop. Idempotent.

        The batch loop stops at its next checkpoint; the server-side
        remainder is cleared in the background; the UI shows "stopping"
        until the poller sees the server go idle.

        Returns:
            True if this call initiated the stop
        """
        state = self.store.get(self.job_type)
        if state is None and not self.reconciler.is_polling:
            logger.debug(f"stop() ignored: no live {self.job_type} job")
            return False

        if state is not None and state is self.controller.state:
            changed = self.controller.request_stop()
        elif state is not None:
            changed = state.request_stop()
        else:
            changed = False

        if not changed and self.stop_intents.is_set(self.job_type):
            return False

        job_id = state.job_id if state is not None else self.reconciler.job_id
        self.stop_intents.set(self.job_type)
        self.events.state_changed(UIState.STOPPING)

        task = asyncio.create_task(self._request_stop(job_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        # A running loop hands over to the poller once it has finished
        if not self.controller.is_running:
            self.reconciler.start_polling(assume_active=True, job_id=job_id)
        return True

    async def wait(self) -> Optional[JobSummary]:
        """Wait for the batch loop and any background stop request."""
        summary = None
        if self.controller.is_running:
            summary = await self.controller.wait()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        return summary or self.controller.last_summary

    async def wait_idle(self):
        """Wait until the poller has stopped (queue mode, stop resolution)."""
        while self.reconciler.is_polling:
            await asyncio.sleep(self.reconciler.config.poll_interval or 0)

    async def detach(self):
        """
        Drop all in-memory job tracking, as on a page unload.

        The server queue and the persisted stop intent are untouched;
        the next check_and_resume() re-attaches.
        """
        task = self.controller.detach()
        if task is not None:
            await asyncio.wait([task])

        self.reconciler.stop_polling()
        state = self.store.get(self.job_type)
        if state is not None:
            self.store.discard(state)

        self.guard.reset()
        self.events.state_changed(UIState.IDLE)
        logger.info(f"Detached from {self.job_type} job")

    async def _request_stop(self, job_id: str):
        try:
            cleared = await self.executor.request_stop(job_id)
        except IndexingError as e:
            logger.warning(f"Stop request for {job_id} failed (the loop still stops): {e}")
            return
        logger.info(f"Stop request for {job_id} cleared {cleared} queued items")

    def _on_state_change(self, state: UIState):
        # Queue-mode states end when the poller sees the server go idle
        if state is UIState.IDLE and not self.controller.is_running:
            live = self.store.get(self.job_type)
            if live is not None and live is not self.controller.state:
                self.store.discard(live)

    def _on_summary(self, summary: JobSummary):
        if summary.job_type != self.job_type:
            return
        # A user-stopped loop leaves the UI in "stopping" until the server drains
        if summary.outcome is JobOutcome.STOPPED:
            self.reconciler.start_polling(assume_active=True, job_id=summary.job_id)
        elif self.stop_intents.clear(self.job_type):
            logger.info(
                f"Job {summary.job_id} ended {summary.outcome.value} before the stop "
                f"took effect, stop intent cleared"
            )

    def _on_refresh(self, reason: str):
        """After the polling cutoff, drop client-side tracking so the next resume check starts over."""
        if reason != REFRESH_SAFETY_TIMEOUT or self.controller.is_running:
            return

        live = self.store.get(self.job_type)
        if live is not None and live is not self.controller.state:
            self.store.discard(live)
        if self.guard.check_state is not ResumeCheckState.RUNNING:
            self.guard.reset()

        logger.warning(
            f"Lost track of {self.job_type} job after the polling cutoff; "
            f"run the resume check again to re-attach"
        )
        self.events.state_changed(UIState.IDLE)
