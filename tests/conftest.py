"""
Pytest configuration and shared fixtures for the indexing orchestrator tests.
"""
import sys
import asyncio
import pytest
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional, Union

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from orchestrator.collaborators import (
    JobTicket,
    BatchResponse,
    StatusReport,
    ActiveJobInfo,
)
from orchestrator.controller import ControllerConfig
from orchestrator.events import JobEvents
from orchestrator.job_state import JobStateStore
from orchestrator.reconciler import ReconcilerConfig
from orchestrator.stop_intent import StopIntentStore


JOB_TYPE = "forum_topics"


# ============================================================================
# Scripted collaborators
# ============================================================================

class ScriptedExecutor:
    """
    BatchExecutor that replays a script of responses.

    Each script entry is a BatchResponse (returned) or an exception
    (raised). Once the script runs out every call answers done.
    """

    def __init__(
        self,
        responses: Optional[List[Union[BatchResponse, Exception]]] = None,
        ticket: Optional[JobTicket] = None,
        gate: Optional[asyncio.Event] = None,
        start_gate: Optional[asyncio.Event] = None,
        cleared: int = 0,
    ):
        self.responses = list(responses or [])
        self.ticket = ticket
        self.gate = gate
        self.start_gate = start_gate
        self.cleared = cleared

        self.start_calls = []
        self.calls = []
        self.stop_calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def start_job(self, job_type, batch_size, options):
        self.start_calls.append((job_type, batch_size, dict(options)))
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.ticket is not None:
            return self.ticket
        return JobTicket(job_id=job_type, total=10, batch_size=batch_size)

    async def execute_batch(self, job_id, batch_size, options):
        self.calls.append((job_id, batch_size, dict(options)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if not self.responses:
                return BatchResponse(done=True)
            result = self.responses.pop(0)
        finally:
            self.in_flight -= 1

        if isinstance(result, Exception):
            raise result
        return result

    async def request_stop(self, job_id):
        self.stop_calls.append(job_id)
        return self.cleared


class ScriptedStatusProvider:
    """
    StatusProvider that replays status reports.

    When the script runs out, `default` is returned on every call.
    """

    def __init__(
        self,
        statuses: Optional[List[Union[StatusReport, Exception]]] = None,
        active_job: Optional[Union[ActiveJobInfo, Exception]] = None,
        default: Optional[StatusReport] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.statuses = list(statuses or [])
        self.active_job = active_job or ActiveJobInfo(active=False)
        self.default = default or StatusReport()
        self.gate = gate

        self.status_calls = []
        self.active_job_calls = []

    async def get_status(self, job_id):
        self.status_calls.append(job_id)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        result = self.statuses.pop(0) if self.statuses else self.default
        if isinstance(result, Exception):
            raise result
        return result

    async def get_active_job(self, job_type):
        self.active_job_calls.append(job_type)
        await asyncio.sleep(0)
        if isinstance(self.active_job, Exception):
            raise self.active_job
        return self.active_job


class EventRecorder:
    """Collects everything a JobEvents hub emits."""

    def __init__(self, events: JobEvents):
        self.progress = []
        self.states = []
        self.summaries = []
        self.refreshes = []
        events.add_callback(JobEvents.PROGRESS, self.progress.append)
        events.add_callback(JobEvents.STATE, self.states.append)
        events.add_callback(JobEvents.SUMMARY, self.summaries.append)
        events.add_callback(JobEvents.REFRESH, self.refreshes.append)

    @property
    def processed_history(self):
        return [snapshot.processed for snapshot in self.progress]


def active(processed=0, total=None, pending=0, worker=True, queue=False):
    """Status report of a running job."""
    return StatusReport(
        worker_active=worker,
        queue_non_empty=queue,
        processed=processed,
        total=total,
        pending_items=pending,
    )


def idle(processed=0):
    """Status report of a drained job."""
    return StatusReport(worker_active=False, queue_non_empty=False, processed=processed)


# ============================================================================
# Fixtures: Collaborators & Components
# ============================================================================

@pytest.fixture
def make_executor():
    """Factory for scripted batch executors."""
    return ScriptedExecutor


@pytest.fixture
def make_provider():
    """Factory for scripted status providers."""
    return ScriptedStatusProvider


@pytest.fixture
def executor():
    return ScriptedExecutor()


@pytest.fixture
def provider():
    return ScriptedStatusProvider()


@pytest.fixture
def events():
    return JobEvents()


@pytest.fixture
def recorder(events):
    return EventRecorder(events)


@pytest.fixture
def store():
    return JobStateStore()


@pytest.fixture
def stop_intents(tmp_path):
    return StopIntentStore(tmp_path / "stop_intent.json")


@pytest.fixture
def controller_config():
    """Batch loop policy without delays."""
    return ControllerConfig(
        batch_delay=0,
        batch_retry_delay=0,
        network_retry_delay=0,
        max_network_retry_delay=0,
        max_consecutive_rejections=10,
        refresh_delay=0,
    )


@pytest.fixture
def reconciler_config():
    """Polling policy without delays."""
    return ReconcilerConfig(
        poll_interval=0,
        safety_timeout=3600,
        refresh_delay=0,
    )


@pytest.fixture
def wait_until():
    """Await a condition with a timeout."""

    async def _wait_until(predicate, timeout: float = 2.0):
        async def _poll():
            while not predicate():
                await asyncio.sleep(0.001)
        await asyncio.wait_for(_poll(), timeout=timeout)

    return _wait_until


@pytest.fixture
def status_reports():
    """Builders for status reports: status_reports.active(...), status_reports.idle(...)."""
    return SimpleNamespace(active=active, idle=idle)
