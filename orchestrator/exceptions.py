"""
Error taxonomy for the indexing orchestrator.

Transport failures and rejected batches are absorbed by the batch loop;
invariant violations are raised synchronously to the caller.
"""


class IndexingError(Exception):
    """Base exception for indexing orchestration errors"""
    pass


class TransportError(IndexingError):
    """Network failure, timeout, server error or undecodable response"""
    pass


class BatchRejectedError(IndexingError):
    """The executor answered but refused to process the request"""
    pass


class InvariantViolationError(IndexingError):
    """Programming or usage error; never queued, always raised at the call site"""
    pass


class JobAlreadyActiveError(InvariantViolationError):
    """A job of this type is already live (or being started)"""

    def __init__(self, job_type: str):
        super().__init__(f"An indexing job of type '{job_type}' is already active")
        self.job_type = job_type


class ResumeCheckPendingError(InvariantViolationError):
    """start() was called before the initial resume check completed"""

    def __init__(self, job_type: str):
        super().__init__(
            f"Resume check for '{job_type}' has not completed; new jobs are gated until it does"
        )
        self.job_type = job_type


class FrozenJobStateError(InvariantViolationError):
    """Mutation attempted on a finished job state"""
    pass
