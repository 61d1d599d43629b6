"""
Indexing job orchestrator.
Drives batch indexing jobs, reconciles server-side status and resumes
jobs that outlived the process that started them.
"""

from .exceptions import (
    IndexingError,
    TransportError,
    BatchRejectedError,
    InvariantViolationError,
    JobAlreadyActiveError,
    ResumeCheckPendingError,
    FrozenJobStateError,
)
from .collaborators import (
    JobTicket,
    BatchResponse,
    StatusReport,
    ActiveJobInfo,
    BatchExecutor,
    StatusProvider,
)
from .job_state import (
    ExecutionMode,
    UIState,
    JobOutcome,
    JobConfig,
    ProgressSnapshot,
    JobSummary,
    JobState,
    JobStateStore,
    classify_outcome,
)
from .events import JobEvents, create_logging_callback
from .stop_intent import StopIntentStore
from .controller import JobController, ControllerConfig
from .reconciler import StatusReconciler, ReconciledStatus, ReconcilerConfig
from .resume_guard import ResumeGuard, ResumeResult, ResumeCheckState
from .manager import IndexingManager
from .http_backend import HttpIndexingBackend

__all__ = [
    # Errors
    'IndexingError',
    'TransportError',
    'BatchRejectedError',
    'InvariantViolationError',
    'JobAlreadyActiveError',
    'ResumeCheckPendingError',
    'FrozenJobStateError',
    # Collaborators
    'JobTicket',
    'BatchResponse',
    'StatusReport',
    'ActiveJobInfo',
    'BatchExecutor',
    'StatusProvider',
    # Job state
    'ExecutionMode',
    'UIState',
    'JobOutcome',
    'JobConfig',
    'ProgressSnapshot',
    'JobSummary',
    'JobState',
    'JobStateStore',
    'classify_outcome',
    # Events
    'JobEvents',
    'create_logging_callback',
    'StopIntentStore',
    # Components
    'JobController',
    'ControllerConfig',
    'StatusReconciler',
    'ReconciledStatus',
    'ReconcilerConfig',
    'ResumeGuard',
    'ResumeResult',
    'ResumeCheckState',
    'IndexingManager',
    'HttpIndexingBackend',
]
