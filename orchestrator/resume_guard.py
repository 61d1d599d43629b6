"""
Resume guard.

Runs once at startup: asks the status provider whether a job of this
type is already active and, if so, re-attaches the batch loop or the
status poller instead of letting the user start a second job.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any

from config.logging_config import get_logger
from config.constants import BATCH_SIZE_DEFAULT

from .collaborators import StatusProvider, ActiveJobInfo
from .controller import JobController
from .events import JobEvents
from .exceptions import TransportError, InvariantViolationError
from .job_state import ExecutionMode, JobState, JobStateStore, ProgressSnapshot, UIState
from .reconciler import StatusReconciler
from .stop_intent import StopIntentStore

logger = get_logger(__name__)


class ResumeCheckState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"


@dataclass
class ResumeResult:
    """Outcome of the startup check."""
    active: bool
    attached: bool = False
    mode: Optional[ExecutionMode] = None
    state: Optional[JobState] = None
    stopping: bool = False
    stale_intent_cleared: bool = False
    error: Optional[str] = None


class ResumeGuard:
    """
    One-shot startup check for a job type.

    New jobs must be gated until `completed` is True; the manager
    enforces that.
    """

    def __init__(
        self,
        provider: StatusProvider,
        store: JobStateStore,
        controller: JobController,
        reconciler: StatusReconciler,
        stop_intents: StopIntentStore,
        events: JobEvents,
        job_type: str,
        mode: ExecutionMode = ExecutionMode.CLIENT_STEPPED,
        batch_size: int = BATCH_SIZE_DEFAULT,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        self.store = store
        self.controller = controller
        self.reconciler = reconciler
        self.stop_intents = stop_intents
        self.events = events
        self.job_type = job_type
        self.mode = mode
        self.batch_size = batch_size
        self.options = dict(options or {})

        self.check_state = ResumeCheckState.PENDING
        self.result: Optional[ResumeResult] = None

    @property
    def completed(self) -> bool:
        return self.check_state is ResumeCheckState.DONE

    def reset(self):
        """Forget the previous check, as after a reload."""
        if self.check_state is ResumeCheckState.RUNNING:
            raise InvariantViolationError("Cannot reset a resume check that is running")
        self.check_state = ResumeCheckState.PENDING
        self.result = None

    async def check_and_resume(self) -> ResumeResult:
        """
        Re-attach to an active job, or settle the UI as idle.

        A second call returns the first call's result.

        Raises:
            InvariantViolationError: the check is already running
        """
        if self.check_state is ResumeCheckState.DONE:
            return self.result
        if self.check_state is ResumeCheckState.RUNNING:
            raise InvariantViolationError(f"Resume check for '{self.job_type}' is already running")

        self.check_state = ResumeCheckState.RUNNING
        try:
            try:
                info = await self.provider.get_active_job(self.job_type)
            except TransportError as e:
                logger.warning(
                    f"Resume check for {self.job_type} failed, assuming no active job: {e}"
                )
                self.events.state_changed(UIState.IDLE)
                result = ResumeResult(active=False, error=str(e))
            else:
                if info.active:
                    result = self._reattach(info)
                else:
                    result = self._settle_idle()
        except BaseException:
            self.check_state = ResumeCheckState.PENDING
            raise

        self.result = result
        self.check_state = ResumeCheckState.DONE
        return result

    def _settle_idle(self) -> ResumeResult:
        cleared = self.stop_intents.clear(self.job_type)
        if cleared:
            logger.info(f"Cleared stale stop intent for {self.job_type}: no active job on server")
        self.events.state_changed(UIState.IDLE)
        return ResumeResult(active=False, stale_intent_cleared=cleared)

    def _reattach(self, info: ActiveJobInfo) -> ResumeResult:
        stopping = self.stop_intents.is_set(self.job_type)
        job_id = info.job_id or self.job_type
        logger.info(
            f"Active {self.job_type} job found: {info.processed}/{info.total} "
            f"({info.remaining} remaining){' - stopping' if stopping else ''}"
        )

        # A stopped job is only watched until it drains, never driven again
        if self.mode is ExecutionMode.QUEUE or stopping:
            total = max(info.total, info.processed + info.remaining)
            self.events.progress(ProgressSnapshot(
                processed=info.processed,
                total=total,
                remaining=info.remaining,
            ))
            self.events.state_changed(UIState.STOPPING if stopping else UIState.PROCESSING)
            self.reconciler.start_polling(assume_active=True, job_id=job_id)
            return ResumeResult(
                active=True,
                attached=True,
                mode=self.mode,
                stopping=stopping,
            )

        state = self.store.reconstruct(
            self.job_type,
            info,
            batch_size=self.batch_size,
            options=self.options,
        )
        self.controller.resume(state)
        return ResumeResult(
            active=True,
            attached=True,
            mode=self.mode,
            state=state,
        )
