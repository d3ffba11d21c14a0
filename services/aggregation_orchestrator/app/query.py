"""Read-only job snapshots for polling clients."""

from collections import defaultdict
from typing import Dict, List, Optional

import structlog

from shared.utils.errors import JobNotFoundError

from .addresses import AddressClassifier
from .models import JobSnapshot, JobState, ProcessedRecord
from .store.base import JobStateStore


logger = structlog.get_logger(__name__)

_SUMMARY_BUCKETS = {
    "Success": "succeeded",
    "Failed": "failed",
    "TimedOut": "timedOut",
}


def compute_progress(succeeded: int, failed: int, timed_out: int, expected: int) -> float:
    """Reported share of expected combos, clamped to [0, 1]; 0 when nothing is expected."""
    if expected <= 0:
        return 0.0
    return max(0.0, min(1.0, (succeeded + failed + timed_out) / expected))


def summarize(records: Dict[str, ProcessedRecord]) -> Dict[str, Dict[str, int]]:
    summary: Dict[str, Dict[str, int]] = defaultdict(lambda: {"succeeded": 0, "failed": 0, "timedOut": 0})
    for record in records.values():
        bucket = _SUMMARY_BUCKETS.get(record.status)
        if bucket:
            summary[record.provider][bucket] += 1
    return dict(sorted(summary.items()))


def build_snapshot(state: JobState, include_items: bool = True) -> JobSnapshot:
    meta = state.metadata
    is_completed = meta.final_emitted
    items = None
    if is_completed and include_items:
        items = state.items if state.items is not None else []

    return JobSnapshot(
        job_id=meta.job_id,
        status=meta.status,
        expected=meta.expected_total,
        succeeded=meta.succeeded,
        failed=meta.failed,
        timed_out=meta.timed_out,
        pending=list(state.pending),
        processed=[state.records[key].to_dict() for key in sorted(state.records)],
        is_completed=is_completed,
        progress=compute_progress(meta.succeeded, meta.failed, meta.timed_out, meta.expected_total),
        accounts=list(meta.accounts),
        chains=list(meta.chains),
        wallet_group_id=meta.wallet_group_id,
        created_at=meta.created_at,
        processed_count=meta.processed_count,
        summary=summarize(state.records),
        items=items,
    )


class AggregationQueryService:
    """
    Builds snapshots of jobs.

    Items are exposed only once a job is completed; before that the
    snapshot carries counters, pending entries and processed records.
    """

    def __init__(
        self,
        store: JobStateStore,
        classifier: Optional[AddressClassifier] = None,
        recent_jobs_limit: int = 20
    ):
        self.store = store
        self.classifier = classifier or AddressClassifier()
        self.recent_jobs_limit = recent_jobs_limit

    async def get_snapshot(self, job_id: str) -> JobSnapshot:
        """Snapshot of ``job_id``; raises JobNotFoundError if unknown or expired."""
        state = await self.store.read_job(job_id)
        if state is None:
            raise JobNotFoundError(job_id)
        return build_snapshot(state)

    async def list_recent_jobs(self, account: str, limit: Optional[int] = None) -> List[JobSnapshot]:
        """Brief snapshots (no items) of the account's live jobs, newest first."""
        limit = self.recent_jobs_limit if limit is None else limit
        normalized = self.classifier.normalize(account)

        snapshots = []
        for job_id in await self.store.recent_job_ids(normalized, limit):
            state = await self.store.read_job(job_id)
            if state is None:
                continue
            snapshots.append(build_snapshot(state, include_items=False))
        return snapshots
