"""
Unit tests for orchestrator.manager module.

Tests the at-most-one-job gate, start/stop flows in both execution
modes, and detach / re-attach.
"""

import asyncio
import pytest

from orchestrator.collaborators import ActiveJobInfo, BatchResponse, JobTicket
from orchestrator.exceptions import (
    JobAlreadyActiveError,
    ResumeCheckPendingError,
    BatchRejectedError,
)
from orchestrator.job_state import ExecutionMode, JobConfig, JobOutcome, UIState
from orchestrator.manager import IndexingManager

JOB_TYPE = "forum_topics"


@pytest.fixture
def make_manager(stop_intents, events, controller_config, reconciler_config):
    def _make(executor, provider, mode=ExecutionMode.CLIENT_STEPPED, **kwargs):
        return IndexingManager(
            executor,
            provider,
            job_type=JOB_TYPE,
            mode=mode,
            stop_intents=stop_intents,
            events=events,
            controller_config=controller_config,
            reconciler_config=reconciler_config,
            **kwargs,
        )
    return _make


class TestStartGate:
    """At-most-one-job rules."""

    @pytest.mark.asyncio
    async def test_start_before_resume_check_rejected(self, make_executor, make_provider, make_manager):
        executor = make_executor()
        manager = make_manager(executor, make_provider())

        with pytest.raises(ResumeCheckPendingError):
            await manager.start(JobConfig())
        assert executor.start_calls == []

    @pytest.mark.asyncio
    async def test_start_while_job_live_rejected(self, make_executor, make_provider, make_manager):
        gate = asyncio.Event()
        executor = make_executor([BatchResponse(processed=10, remaining=0, done=True)], gate=gate)
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        await manager.start(JobConfig(batch_size=5))
        with pytest.raises(JobAlreadyActiveError):
            await manager.start(JobConfig(batch_size=5))
        assert len(executor.start_calls) == 1

        gate.set()
        await asyncio.wait_for(manager.wait(), timeout=5)

    @pytest.mark.asyncio
    async def test_start_while_starting_rejected(self, make_executor, make_provider, make_manager):
        start_gate = asyncio.Event()
        executor = make_executor(start_gate=start_gate)
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        first = asyncio.create_task(manager.start(JobConfig()))
        await asyncio.sleep(0)
        with pytest.raises(JobAlreadyActiveError):
            await manager.start(JobConfig())

        start_gate.set()
        await asyncio.wait_for(first, timeout=5)
        await asyncio.wait_for(manager.wait(), timeout=5)

    @pytest.mark.asyncio
    async def test_start_rejected_while_resumed_job_runs(self, make_executor, make_provider, make_manager):
        gate = asyncio.Event()
        executor = make_executor([BatchResponse(processed=100, remaining=0, done=True)], gate=gate)
        provider = make_provider(active_job=ActiveJobInfo(active=True, total=100, processed=40, remaining=60))
        manager = make_manager(executor, provider)

        result = await manager.check_and_resume()
        assert result.attached

        with pytest.raises(JobAlreadyActiveError):
            await manager.start(JobConfig())
        assert executor.start_calls == []

        gate.set()
        await asyncio.wait_for(manager.wait(), timeout=5)

    @pytest.mark.asyncio
    async def test_new_job_allowed_after_finish(self, make_executor, make_provider, make_manager):
        executor = make_executor()
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        await manager.start(JobConfig())
        await asyncio.wait_for(manager.wait(), timeout=5)
        await manager.start(JobConfig())
        await asyncio.wait_for(manager.wait(), timeout=5)

        assert len(executor.start_calls) == 2


class TestStart:
    """Start handshake."""

    @pytest.mark.asyncio
    async def test_client_stepped_job_runs_to_completion(self, make_executor, make_provider, make_manager, events):
        executor = make_executor(
            [BatchResponse(processed=5, remaining=5), BatchResponse(processed=10, remaining=0, done=True)],
            ticket=JobTicket(job_id=JOB_TYPE, total=10, batch_size=5),
        )
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        state = await manager.start(JobConfig(batch_size=5))
        assert state.total == 10
        assert manager.state is state

        summary = await asyncio.wait_for(manager.wait(), timeout=5)
        assert summary.outcome is JobOutcome.SUCCESS
        assert manager.state is None
        assert events.state is UIState.FINISHED

    @pytest.mark.asyncio
    async def test_nothing_to_index(self, make_executor, make_provider, make_manager, events):
        executor = make_executor(ticket=JobTicket(job_id=JOB_TYPE, total=0, batch_size=10, message="No topics found to index."))
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        assert await manager.start(JobConfig()) is None
        assert manager.state is None
        assert executor.calls == []
        assert events.state is UIState.IDLE

    @pytest.mark.asyncio
    async def test_insufficient_credits_still_starts(self, make_executor, make_provider, make_manager, caplog):
        executor = make_executor(ticket=JobTicket(
            job_id=JOB_TYPE, total=10, batch_size=10, credits_available=3, credits_needed=10,
        ))
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        state = await manager.start(JobConfig())
        await asyncio.wait_for(manager.wait(), timeout=5)

        assert state is not None
        assert "Insufficient credits" in caplog.text

    @pytest.mark.asyncio
    async def test_start_failure_propagates_and_releases_gate(self, make_executor, make_provider, make_manager):
        executor = make_executor()

        async def refuse(job_type, batch_size, options):
            raise BatchRejectedError("No credits available.")

        executor.start_job = refuse
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        with pytest.raises(BatchRejectedError):
            await manager.start(JobConfig())
        assert manager.is_active is False

    @pytest.mark.asyncio
    async def test_options_passed_to_start_and_batches(self, make_executor, make_provider, make_manager):
        executor = make_executor([BatchResponse(processed=10, remaining=0, done=True)])
        manager = make_manager(executor, make_provider(), options={"chunk_size": 512})
        await manager.check_and_resume()

        await manager.start(JobConfig(batch_size=20, images_only=True))
        await asyncio.wait_for(manager.wait(), timeout=5)

        expected = {"chunk_size": 512, "images_only": True}
        assert executor.start_calls == [(JOB_TYPE, 20, expected)]
        assert executor.calls[0][2] == expected

    @pytest.mark.asyncio
    async def test_queue_mode_observes_instead_of_driving(self, make_executor, make_provider, make_manager, status_reports, events, recorder):
        executor = make_executor()
        provider = make_provider([
            status_reports.active(processed=4, total=10, pending=6),
            status_reports.active(worker=False, queue=True, processed=8, total=10, pending=2),
            status_reports.idle(processed=10),
        ])
        manager = make_manager(executor, provider, mode=ExecutionMode.QUEUE)
        await manager.check_and_resume()

        state = await manager.start(JobConfig())
        assert state is not None
        assert events.state is UIState.PROCESSING
        assert manager.reconciler.is_polling

        await asyncio.wait_for(manager.wait_idle(), timeout=5)
        await asyncio.wait_for(manager.reconciler.pending_refresh, timeout=5)

        assert executor.calls == []
        assert events.state is UIState.IDLE
        assert manager.state is None
        assert recorder.refreshes == ["job_completed"]


class TestStop:
    """Stop flows."""

    @pytest.mark.asyncio
    async def test_stop_without_job_is_noop(self, make_executor, make_provider, make_manager, stop_intents):
        executor = make_executor()
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        assert manager.stop() is False
        assert not stop_intents.is_set(JOB_TYPE)
        assert executor.stop_calls == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, make_executor, make_provider, make_manager, stop_intents, events):
        executor = make_executor(
            [BatchResponse(processed=3, remaining=7), BatchResponse(processed=6, remaining=4)],
            cleared=7,
        )
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()
        results = []

        def stop_twice(snapshot):
            if snapshot.processed == 3 and not results:
                results.append(manager.stop())
                results.append(manager.stop())

        events.add_callback(events.PROGRESS, stop_twice)

        state = await manager.start(JobConfig(batch_size=3))
        summary = await asyncio.wait_for(manager.wait(), timeout=5)

        assert results == [True, False]
        assert state.stop_requested is True
        assert summary.outcome is JobOutcome.STOPPED
        assert len(executor.calls) == 1
        assert executor.stop_calls == [JOB_TYPE]

    @pytest.mark.asyncio
    async def test_stopping_resolves_to_idle_when_server_drains(self, make_executor, make_provider, make_manager, status_reports, stop_intents, events, recorder):
        executor = make_executor([BatchResponse(processed=3, remaining=7)])
        provider = make_provider([
            status_reports.active(worker=False, queue=True, processed=4),
            status_reports.idle(processed=4),
        ])
        manager = make_manager(executor, provider)
        await manager.check_and_resume()

        events.add_callback(events.PROGRESS, lambda s: s.processed == 3 and manager.stop())

        await manager.start(JobConfig())
        await asyncio.wait_for(manager.wait(), timeout=5)

        assert events.state is UIState.STOPPING
        assert stop_intents.is_set(JOB_TYPE)

        await asyncio.wait_for(manager.wait_idle(), timeout=5)

        assert events.state is UIState.IDLE
        assert not stop_intents.is_set(JOB_TYPE)
        assert UIState.STOPPING in recorder.states
        assert recorder.states[-1] is UIState.IDLE

    @pytest.mark.asyncio
    async def test_stop_in_queue_mode(self, make_executor, make_provider, make_manager, status_reports, stop_intents, events):
        executor = make_executor()
        provider = make_provider(default=status_reports.active(processed=1))
        manager = make_manager(executor, provider, mode=ExecutionMode.QUEUE)
        manager.reconciler.config.poll_interval = 60
        await manager.check_and_resume()
        await manager.start(JobConfig())

        assert manager.stop() is True
        assert manager.stop() is False
        await asyncio.wait_for(manager.wait(), timeout=5)

        assert events.state is UIState.STOPPING
        assert stop_intents.is_set(JOB_TYPE)
        assert executor.stop_calls == [JOB_TYPE]

        manager.reconciler.stop_polling()

    @pytest.mark.asyncio
    async def test_failed_stop_request_is_logged(self, make_executor, make_provider, make_manager, events, caplog):
        executor = make_executor([BatchResponse(processed=3, remaining=7)])

        async def refuse_stop(job_id):
            raise BatchRejectedError("nonce expired")

        executor.request_stop = refuse_stop
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()
        events.add_callback(events.PROGRESS, lambda s: s.processed == 3 and manager.stop())

        await manager.start(JobConfig())
        summary = await asyncio.wait_for(manager.wait(), timeout=5)

        assert summary.outcome is JobOutcome.STOPPED
        assert "nonce expired" in caplog.text

    @pytest.mark.asyncio
    async def test_stop_overtaken_by_exhaustion_clears_intent(self, make_executor, make_provider, make_manager, stop_intents, events, wait_until):
        gate = asyncio.Event()
        executor = make_executor(
            [BatchResponse(processed=3, remaining=7, credits_exhausted=True)],
            gate=gate,
        )
        manager = make_manager(executor, make_provider())
        await manager.check_and_resume()

        await manager.start(JobConfig())
        await wait_until(lambda: executor.calls)
        assert manager.stop() is True
        assert stop_intents.is_set(JOB_TYPE)

        gate.set()
        summary = await asyncio.wait_for(manager.wait(), timeout=5)

        assert summary.outcome is JobOutcome.EXHAUSTED
        assert events.state is UIState.EXHAUSTED
        assert not stop_intents.is_set(JOB_TYPE)
        assert not manager.reconciler.is_polling


class TestSafetyCutoff:
    """Polling cutoff in queue mode."""

    @pytest.mark.asyncio
    async def test_cutoff_releases_job_for_a_new_resume_check(self, make_executor, make_provider, make_manager, status_reports, reconciler_config, events, recorder, wait_until):
        reconciler_config.safety_timeout = 0
        provider = make_provider(default=status_reports.active(processed=1))
        manager = make_manager(make_executor(), provider, mode=ExecutionMode.QUEUE)
        await manager.check_and_resume()
        await manager.start(JobConfig())

        await wait_until(lambda: not manager.reconciler.is_polling)
        await asyncio.wait_for(manager.reconciler.pending_refresh, timeout=2)

        assert recorder.refreshes == ["safety_timeout"]
        assert manager.state is None
        assert not manager.is_active
        assert events.state is UIState.IDLE
        with pytest.raises(ResumeCheckPendingError):
            await manager.start(JobConfig())

        # The server still reports the job; a fresh check re-attaches
        reconciler_config.safety_timeout = 3600
        reconciler_config.poll_interval = 60
        provider.active_job = ActiveJobInfo(active=True, total=10, processed=1, remaining=9)
        result = await manager.check_and_resume()

        assert result.attached
        assert events.state is UIState.PROCESSING
        manager.reconciler.stop_polling()


class TestDetach:
    """Page-unload simulation."""

    @pytest.mark.asyncio
    async def test_detach_then_reattach(self, make_executor, make_provider, make_manager, stop_intents):
        gate = asyncio.Event()
        executor = make_executor(
            [BatchResponse(processed=5, remaining=5), BatchResponse(processed=10, remaining=0, done=True)],
            gate=gate,
        )
        provider = make_provider()
        manager = make_manager(executor, provider)
        await manager.check_and_resume()

        await manager.start(JobConfig(batch_size=5))
        await asyncio.sleep(0)
        await manager.detach()

        assert manager.state is None
        assert not manager.is_active
        assert executor.stop_calls == []
        assert not manager.guard.completed

        # The server still reports the job; the next check re-attaches
        provider.active_job = ActiveJobInfo(active=True, total=10, processed=0, remaining=10, batch_size=5)
        gate.set()
        result = await manager.check_and_resume()

        assert result.attached
        summary = await asyncio.wait_for(manager.wait(), timeout=5)
        assert summary.processed == 10
        assert summary.outcome is JobOutcome.SUCCESS
