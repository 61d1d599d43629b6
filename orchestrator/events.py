"""
Event fan-out to the UI collaborator.
Listeners receive progress, state changes, final summaries and refresh requests.
"""

from typing import Callable, Dict, List, Any, Optional

from config.logging_config import get_logger

from .job_state import UIState, ProgressSnapshot, JobSummary

logger = get_logger(__name__)


# Type aliases for listeners
ProgressCallback = Callable[[ProgressSnapshot], None]
StateCallback = Callable[[UIState], None]
SummaryCallback = Callable[[JobSummary], None]
RefreshCallback = Callable[[str], None]


class JobEvents:
    """
    Callback hub shared by the controller, reconciler and resume guard.

    Features:
    - Several listeners per event
    - State changes are emitted only when the state actually changes
    - A failing listener is logged and never breaks the caller

    Usage:
        events = JobEvents()
        events.add_callback(JobEvents.PROGRESS, lambda snap: print(snap.processed))
        events.add_callback(JobEvents.STATE, render_status)
    """

    PROGRESS = "progress"
    STATE = "state"
    SUMMARY = "summary"
    REFRESH = "refresh"

    def __init__(self, initial_state: UIState = UIState.IDLE):
        self._callbacks: Dict[str, List[Callable]] = {
            self.PROGRESS: [],
            self.STATE: [],
            self.SUMMARY: [],
            self.REFRESH: [],
        }
        self.state = initial_state
        self.last_progress: Optional[ProgressSnapshot] = None
        self.last_summary: Optional[JobSummary] = None

    def add_callback(self, event: str, callback: Callable):
        """Add listener for an event."""
        if event not in self._callbacks:
            raise ValueError(f"Unknown event: {event}")
        self._callbacks[event].append(callback)

    def remove_callback(self, event: str, callback: Callable):
        """Remove listener."""
        if callback in self._callbacks.get(event, []):
            self._callbacks[event].remove(callback)

    def progress(self, snapshot: ProgressSnapshot):
        self.last_progress = snapshot
        self._notify(self.PROGRESS, snapshot)

    def state_changed(self, state: UIState) -> bool:
        """
        Publish a UI state.

        Returns:
            True if listeners were notified (the state changed)
        """
        if state is self.state:
            return False
        old_state = self.state
        self.state = state
        logger.debug(f"UI state: {old_state.value} → {state.value}")
        self._notify(self.STATE, state)
        return True

    def final_summary(self, summary: JobSummary):
        self.last_summary = summary
        self._notify(self.SUMMARY, summary)

    def refresh(self, reason: str):
        logger.debug(f"Refresh requested: {reason}")
        self._notify(self.REFRESH, reason)

    def _notify(self, event: str, payload: Any):
        """Notify all listeners of one event."""
        for callback in self._callbacks[event]:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"{event} callback error: {e}")


def create_logging_callback(log_interval: int = 5) -> ProgressCallback:
    """
    Create a progress listener that logs every N updates.

    Args:
        log_interval: Log every N updates

    Returns:
        Progress callback function
    """
    counter = {"count": 0}

    def callback(snapshot: ProgressSnapshot):
        counter["count"] += 1
        if counter["count"] % log_interval == 0 or snapshot.percentage >= 1.0:
            logger.info(
                f"Progress: {snapshot.processed}/{snapshot.total} "
                f"({snapshot.percentage*100:.1f}%) - Errors: {snapshot.errors_count}"
            )

    return callback
