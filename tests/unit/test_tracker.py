"""Unit tests for completion tracking."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from shared.utils.errors import ValidationError
from services.aggregation_orchestrator.app.models import JobStatus
from services.aggregation_orchestrator.app.store.base import TimeoutMark, TimeoutMarkCode
from services.aggregation_orchestrator.app.tracker import merge_items
from tests.fixtures.sample_accounts import EVM_ACCOUNT, EVM_ACCOUNT_2, EVM_ACCOUNT_CHECKSUM


class TestMergeItems:
    """Test merge_items."""

    def test_fragment_shapes(self):
        """Lists extend, item mappings unwrap, scalars append, in key order."""
        payloads = {
            "b:base:x": {"items": [3, 4]},
            "a:base:x": [1, 2],
            "c:base:x": {"total": 5},
            "d:base:x": None,
        }
        assert merge_items(payloads) == [1, 2, 3, 4, {"total": 5}]

    def test_empty(self):
        """No payloads yields no items."""
        assert merge_items({}) == []


class TestCompletionTracker:
    """Test CompletionTracker through the orchestrator."""

    @pytest.mark.asyncio
    async def test_first_report_updates_counters(self, orchestrator):
        """A first-time report removes the combo and bumps one counter."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        result = await orchestrator.report_outcome(
            job.job_id, "Alpha", "BASE", "Success", account=EVM_ACCOUNT, payload=[{"token": "ETH"}]
        )

        assert result.removed
        assert result.known
        assert result.pending_count == 2
        assert result.succeeded == 1
        assert result.status is JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_duplicate_report_only_updates_record(self, orchestrator):
        """Repeating a report leaves counters alone but refreshes the record."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        await orchestrator.report_outcome(job.job_id, "alpha", "base", "Failure", account=EVM_ACCOUNT, error="rpc")
        again = await orchestrator.report_outcome(
            job.job_id, "alpha", "base", "Failure", account=EVM_ACCOUNT, error="rpc again"
        )

        assert not again.removed
        assert again.known
        assert again.failed == 1
        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.processed_count == 1
        assert snapshot.processed[0]["error"] == "rpc again"

    @pytest.mark.asyncio
    async def test_unknown_combo_ignored(self, orchestrator):
        """Outcomes for combos the job never dispatched change nothing."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        result = await orchestrator.report_outcome(job.job_id, "zulu", "base", "Success", account=EVM_ACCOUNT)

        assert not result.removed
        assert not result.known
        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.processed == []
        assert snapshot.succeeded == 0

    @pytest.mark.asyncio
    async def test_expired_job_ignored(self, orchestrator, store):
        """Reports for expired jobs return None."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        store.expire_job(job.job_id)

        assert await orchestrator.report_outcome(job.job_id, "alpha", "base", "Success", account=EVM_ACCOUNT) is None
        assert await orchestrator.report_outcome(job.job_id, "alpha", "base", "Success") is None

    @pytest.mark.asyncio
    async def test_account_inferred_for_single_account_job(self, orchestrator):
        """Single-account jobs accept reports without an account."""
        job = await orchestrator.ensure([EVM_ACCOUNT_CHECKSUM], ["base"])
        result = await orchestrator.report_outcome(job.job_id, "charlie", "base", "Timeout")
        assert result.removed
        assert result.timed_out == 1

    @pytest.mark.asyncio
    async def test_account_required_for_multi_account_job(self, orchestrator):
        """Multi-account jobs need the account to locate the combo."""
        job = await orchestrator.ensure([EVM_ACCOUNT, EVM_ACCOUNT_2], ["base"])
        with pytest.raises(ValidationError):
            await orchestrator.report_outcome(job.job_id, "alpha", "base", "Success")

    @pytest.mark.asyncio
    async def test_last_report_finalizes_once(self, orchestrator, store, publisher):
        """Draining pending finalizes and emits exactly one completion."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        for provider in ("alpha", "bravo", "charlie"):
            await orchestrator.report_outcome(
                job.job_id, provider, "base", "Success", account=EVM_ACCOUNT, payload=[provider]
            )
        await orchestrator.report_outcome(job.job_id, "charlie", "base", "Success", account=EVM_ACCOUNT)

        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.status is JobStatus.COMPLETED
        assert snapshot.items == ["alpha", "bravo", "charlie"]
        assert len(publisher.completions) == 1
        event = publisher.completions[0]
        assert event["type"] == "WalletAggregationCompleted"
        assert event["jobId"] == job.job_id
        assert event["status"] == "Completed"
        assert event["accounts"] == [EVM_ACCOUNT]

    @pytest.mark.asyncio
    async def test_records_frozen_after_finalization(self, orchestrator):
        """Late duplicates do not rewrite a finalized job."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        for provider in ("alpha", "bravo", "charlie"):
            await orchestrator.report_outcome(job.job_id, provider, "base", "Success", account=EVM_ACCOUNT)

        late = await orchestrator.report_outcome(
            job.job_id, "alpha", "base", "Failure", account=EVM_ACCOUNT, error="late"
        )
        assert late.final_emitted
        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert all(record["status"] == "Success" for record in snapshot.processed)
        assert snapshot.failed == 0

    @pytest.mark.asyncio
    async def test_concurrent_final_reports_emit_once(self, orchestrator, publisher):
        """Racing reports still produce a single completion event."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        await asyncio.gather(*(
            orchestrator.report_outcome(job.job_id, provider, "base", outcome, account=EVM_ACCOUNT)
            for provider in ("alpha", "bravo", "charlie")
            for outcome in ("Success", "Failure")
        ))

        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.is_completed
        assert snapshot.succeeded + snapshot.failed == snapshot.expected
        assert len(publisher.completions) == 1

    @pytest.mark.asyncio
    async def test_completion_publish_failure_logged(self, orchestrator, publisher):
        """A failing completion publisher does not break finalization."""
        publisher.publish_completion = AsyncMock(side_effect=RuntimeError("bus down"))
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        for provider in ("alpha", "bravo", "charlie"):
            await orchestrator.report_outcome(job.job_id, provider, "base", "Success", account=EVM_ACCOUNT)

        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.status is JobStatus.COMPLETED
        publisher.publish_completion.assert_awaited_once()


class TestMarkTimedOut:
    """Test wholesale timeout."""

    @pytest.mark.asyncio
    async def test_marks_remaining_pending(self, orchestrator, publisher):
        """Pending combos become TimedOut and the job finalizes."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        await orchestrator.report_outcome(
            job.job_id, "alpha", "base", "Success", account=EVM_ACCOUNT, payload={"items": [1]}
        )

        result = await orchestrator.mark_timed_out(job.job_id)
        assert result.status is JobStatus.TIMED_OUT
        assert result.timed_out == 2

        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.pending == []
        assert snapshot.succeeded + snapshot.failed + snapshot.timed_out == snapshot.expected
        assert snapshot.items == [1]
        assert sorted(r["status"] for r in snapshot.processed) == ["Success", "TimedOut", "TimedOut"]
        assert publisher.completions[0]["status"] == "TimedOut"

    @pytest.mark.asyncio
    async def test_noop_for_terminal_and_unknown(self, orchestrator, publisher):
        """Completed and unknown jobs are left alone."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        for provider in ("alpha", "bravo", "charlie"):
            await orchestrator.report_outcome(job.job_id, provider, "base", "Success", account=EVM_ACCOUNT)

        assert await orchestrator.mark_timed_out(job.job_id) is None
        assert await orchestrator.mark_timed_out("no-such-job") is None
        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.status is JobStatus.COMPLETED
        assert len(publisher.completions) == 1

    @pytest.mark.asyncio
    async def test_retries_when_payloads_change(self, orchestrator, store):
        """A concurrent success makes the timeout rebuild its items."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        store.mark_timed_out = AsyncMock(side_effect=_sequence(
            TimeoutMark(TimeoutMarkCode.PAYLOADS_CHANGED), store.mark_timed_out
        ))

        result = await orchestrator.mark_timed_out(job.job_id)
        assert result.status is JobStatus.TIMED_OUT
        assert store.mark_timed_out.await_count == 2

    @pytest.mark.asyncio
    async def test_drained_job_finalized_instead(self, orchestrator, store, publisher):
        """A drained but unfinalized job completes normally."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        store.pending[job.job_id].clear()

        result = await orchestrator.mark_timed_out(job.job_id)
        assert result.status is JobStatus.COMPLETED
        assert publisher.completions[0]["status"] == "Completed"


def _sequence(*steps):
    """AsyncMock side effect returning values or awaiting callables in turn."""
    remaining = list(steps)

    async def side_effect(*args):
        step = remaining.pop(0)
        if callable(step):
            return await step(*args)
        return step

    return side_effect
