"""In-memory test doubles for the orchestrator's store and message bus."""

import asyncio
import json
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

from shared.utils.errors import PublishError, StoreUnavailableError

from services.aggregation_orchestrator.app.models import (
    FinalizeResult,
    JobMetadata,
    JobState,
    JobStatus,
    OutcomeKind,
    ProcessedRecord,
    ReportResult,
    format_timestamp,
    split_combo_key,
)
from services.aggregation_orchestrator.app.output.publishers import (
    CompletionPublisher,
    RequestPublisher,
)
from services.aggregation_orchestrator.app.store.base import (
    JobStateStore,
    TimeoutMark,
    TimeoutMarkCode,
)


class InMemoryJobStateStore(JobStateStore):
    """
    JobStateStore held in dictionaries.

    One asyncio.Lock serializes every mutation, standing in for the
    atomicity Redis gives each script. TTLs are recorded, not enforced;
    ``expire_job`` simulates expiry.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self.pointers: Dict[str, str] = {}
        self.meta: Dict[str, Dict[str, str]] = {}
        self.pending: Dict[str, Set[str]] = {}
        self.results: Dict[str, Dict[str, str]] = {}
        self.payloads: Dict[str, Dict[str, str]] = {}
        self.items: Dict[str, str] = {}
        self.index: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.available = True
        self.finalize_calls = 0

    def _check(self, operation: str) -> None:
        if not self.available:
            raise StoreUnavailableError(f"store down during {operation}", operation=operation)

    def expire_job(self, job_id: str) -> None:
        """Drop every key of a job, as TTL expiry would."""
        for table in (self.meta, self.pending, self.results, self.payloads, self.items):
            table.pop(job_id, None)

    async def try_get_pointer(self, reuse_key: str) -> Optional[str]:
        self._check("try_get_pointer")
        job_id = self.pointers.get(reuse_key)
        if job_id is None or job_id not in self.meta:
            return None
        return job_id

    async def set_pointer(self, reuse_key: str, job_id: str, ttl: int) -> None:
        self._check("set_pointer")
        self.pointers[reuse_key] = job_id
        self.ttls[f"pointer:{reuse_key}"] = ttl

    async def create_job_if_absent(self, metadata: JobMetadata, combo_keys: Sequence[str], ttl: int) -> bool:
        self._check("create_job")
        async with self._lock:
            if metadata.job_id in self.meta:
                return False
            self.meta[metadata.job_id] = metadata.to_hash()
            self.pending[metadata.job_id] = set(combo_keys)
            for account in metadata.accounts:
                self.index.setdefault(account, {})[metadata.job_id] = metadata.created_at.timestamp()
            self.ttls[f"meta:{metadata.job_id}"] = ttl
            self.ttls[f"pending:{metadata.job_id}"] = ttl
            return True

    async def recent_job_ids(self, account: str, limit: int) -> List[str]:
        self._check("recent_job_ids")
        entries = self.index.get(account, {})
        ordered = sorted(entries, key=lambda job_id: entries[job_id], reverse=True)
        return ordered[:limit]

    async def get_metadata(self, job_id: str) -> Optional[JobMetadata]:
        self._check("get_metadata")
        fields = self.meta.get(job_id)
        if not fields:
            return None
        return JobMetadata.from_hash(job_id, dict(fields))

    async def atomic_report_outcome(
        self,
        job_id: str,
        combo_key: str,
        outcome: OutcomeKind,
        record: ProcessedRecord,
        payload_json: Optional[str] = None
    ) -> Optional[ReportResult]:
        self._check("report_outcome")
        async with self._lock:
            meta = self.meta.get(job_id)
            if meta is None:
                return None

            pending = self.pending.setdefault(job_id, set())
            results = self.results.setdefault(job_id, {})
            removed = combo_key in pending
            pending.discard(combo_key)
            known = removed or combo_key in results
            finalized = meta["final_emitted"] == "1"

            if known and not finalized:
                results[combo_key] = record.to_json()
            if removed:
                field = outcome.counter_field
                meta[field] = str(int(meta[field]) + 1)
                meta["processed_count"] = str(int(meta["processed_count"]) + 1)
                if payload_json:
                    self.payloads.setdefault(job_id, {})[combo_key] = payload_json

            return ReportResult(
                removed=removed,
                known=known,
                pending_count=len(pending),
                succeeded=int(meta["succeeded"]),
                failed=int(meta["failed"]),
                timed_out=int(meta["timed_out"]),
                status=JobStatus(meta["status"]),
                final_emitted=meta["final_emitted"] == "1",
            )

    async def get_payloads(self, job_id: str) -> Dict[str, Any]:
        self._check("get_payloads")
        return {key: json.loads(value) for key, value in self.payloads.get(job_id, {}).items()}

    async def try_finalize(
        self,
        job_id: str,
        items: List[Any],
        completed_at: datetime
    ) -> Optional[FinalizeResult]:
        self._check("finalize")
        self.finalize_calls += 1
        async with self._lock:
            meta = self.meta.get(job_id)
            if meta is None or meta["final_emitted"] == "1" or self.pending.get(job_id):
                return None

            failed, timed_out = int(meta["failed"]), int(meta["timed_out"])
            if int(meta["succeeded"]) + failed + timed_out != int(meta["expected_total"]):
                return None
            status = JobStatus.COMPLETED if failed == 0 and timed_out == 0 else JobStatus.COMPLETED_WITH_ERRORS
            meta.update({
                "final_emitted": "1",
                "status": status.value,
                "completed_at": format_timestamp(completed_at),
            })
            self.items[job_id] = json.dumps(items)
            return FinalizeResult(
                job_id=job_id,
                status=status,
                completed_at=completed_at,
                expected_total=int(meta["expected_total"]),
                succeeded=int(meta["succeeded"]),
                failed=failed,
                timed_out=timed_out,
                item_count=len(items),
            )

    async def mark_timed_out(
        self,
        job_id: str,
        items: List[Any],
        payload_count: int,
        completed_at: datetime
    ) -> TimeoutMark:
        self._check("mark_timed_out")
        async with self._lock:
            meta = self.meta.get(job_id)
            if meta is None:
                return TimeoutMark(TimeoutMarkCode.NOT_FOUND)
            if meta["final_emitted"] == "1" or meta["status"] != JobStatus.RUNNING.value:
                return TimeoutMark(TimeoutMarkCode.TERMINAL)
            pending = self.pending.get(job_id) or set()
            if not pending:
                return TimeoutMark(TimeoutMarkCode.DRAINED)
            if len(self.payloads.get(job_id, {})) != payload_count:
                return TimeoutMark(TimeoutMarkCode.PAYLOADS_CHANGED)

            stamp = format_timestamp(completed_at)
            results = self.results.setdefault(job_id, {})
            for member in pending:
                provider, chain, account = split_combo_key(member)
                results[member] = ProcessedRecord(
                    provider=provider,
                    chain=chain,
                    account=account,
                    status="TimedOut",
                    error="Job timed out before the provider reported",
                    updated_at=stamp,
                ).to_json()

            meta["timed_out"] = str(int(meta["timed_out"]) + len(pending))
            meta.update({"status": JobStatus.TIMED_OUT.value, "final_emitted": "1", "completed_at": stamp})
            self.pending[job_id] = set()
            self.items[job_id] = json.dumps(items)

            return TimeoutMark(
                TimeoutMarkCode.MARKED,
                FinalizeResult(
                    job_id=job_id,
                    status=JobStatus.TIMED_OUT,
                    completed_at=completed_at,
                    expected_total=int(meta["expected_total"]),
                    succeeded=int(meta["succeeded"]),
                    failed=int(meta["failed"]),
                    timed_out=int(meta["timed_out"]),
                    item_count=len(items),
                ),
            )

    async def read_job(self, job_id: str) -> Optional[JobState]:
        self._check("read_job")
        async with self._lock:
            fields = self.meta.get(job_id)
            if not fields:
                return None
            items_raw = self.items.get(job_id)
            return JobState(
                metadata=JobMetadata.from_hash(job_id, dict(fields)),
                pending=sorted(self.pending.get(job_id, set())),
                records={
                    key: ProcessedRecord.from_json(raw)
                    for key, raw in self.results.get(job_id, {}).items()
                },
                items=json.loads(items_raw) if items_raw else None,
            )

    async def scan_job_ids(self) -> AsyncIterator[str]:
        self._check("scan_job_ids")
        for job_id in list(self.meta):
            yield job_id

    async def ping(self) -> bool:
        return self.available


class RecordingPublisher(RequestPublisher, CompletionPublisher):
    """Records requests and completion events; can fail chosen providers."""

    def __init__(self, failing_providers: Optional[Set[str]] = None):
        self.requests: List[Tuple[str, str, Dict[str, Any]]] = []
        self.completions: List[Dict[str, Any]] = []
        self.failing_providers = failing_providers or set()

    async def publish_request(self, topic: str, key: str, message: Dict[str, Any]) -> None:
        if message["provider"] in self.failing_providers:
            raise PublishError(f"broker refused {topic}", topic=topic)
        self.requests.append((topic, key, message))

    async def publish_completion(self, event: Dict[str, Any]) -> None:
        self.completions.append(event)

    def messages_for(self, job_id: str) -> List[Dict[str, Any]]:
        return [message for _, _, message in self.requests if message["jobId"] == job_id]
