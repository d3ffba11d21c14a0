"""Job state store contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ..models import (
    FinalizeResult,
    JobMetadata,
    JobState,
    OutcomeKind,
    ProcessedRecord,
    ReportResult,
)


class TimeoutMarkCode(str, Enum):
    """Result codes of a wholesale timeout attempt."""
    MARKED = "marked"
    TERMINAL = "terminal"
    NOT_FOUND = "not_found"
    DRAINED = "drained"
    PAYLOADS_CHANGED = "payloads_changed"


@dataclass
class TimeoutMark:
    code: TimeoutMarkCode
    result: Optional[FinalizeResult] = None


class JobStateStore(ABC):
    """
    Shared job state with per-key expiry.

    Every mutating method must be atomic across processes. Counters,
    the pending set and the final_emitted flag are only ever changed
    through the store's own atomic primitives, never by a read
    followed by a write from the caller.
    """

    @abstractmethod
    async def try_get_pointer(self, reuse_key: str) -> Optional[str]:
        """Job id stored at ``reuse_key`` if its metadata still exists."""

    @abstractmethod
    async def set_pointer(self, reuse_key: str, job_id: str, ttl: int) -> None:
        """Point ``reuse_key`` at ``job_id``; the last writer wins."""

    @abstractmethod
    async def create_job_if_absent(self, metadata: JobMetadata, combo_keys: Sequence[str], ttl: int) -> bool:
        """
        Create a job in one atomic step.

        Writes the metadata, the pending set of ``combo_keys`` and an
        entry in each account's recent-jobs index, all with ``ttl``.
        False if the metadata already existed, in which case nothing
        is written.
        """

    @abstractmethod
    async def recent_job_ids(self, account: str, limit: int) -> List[str]:
        """Most recent job ids for an account, newest first."""

    @abstractmethod
    async def get_metadata(self, job_id: str) -> Optional[JobMetadata]:
        """Job metadata, or None once expired."""

    @abstractmethod
    async def atomic_report_outcome(
        self,
        job_id: str,
        combo_key: str,
        outcome: OutcomeKind,
        record: ProcessedRecord,
        payload_json: Optional[str] = None
    ) -> Optional[ReportResult]:
        """
        Apply one outcome report in a single atomic step.

        Removes ``combo_key`` from pending and, only when it was
        removed, increments the outcome counter and processed_count
        and stores the payload. The processed record is written for
        known combos until the job is finalized. Returns None when
        the job has expired.
        """

    @abstractmethod
    async def get_payloads(self, job_id: str) -> Dict[str, Any]:
        """Stored success payloads keyed by combo key."""

    @abstractmethod
    async def try_finalize(
        self,
        job_id: str,
        items: List[Any],
        completed_at: datetime
    ) -> Optional[FinalizeResult]:
        """
        Compare-and-set finalization.

        Succeeds only for a job whose pending set is empty, whose
        outcome counters add up to expected_total and whose
        final_emitted flag is unset; stores ``items``, flips the flag
        and sets the terminal status. Returns None otherwise.
        """

    @abstractmethod
    async def mark_timed_out(
        self,
        job_id: str,
        items: List[Any],
        payload_count: int,
        completed_at: datetime
    ) -> TimeoutMark:
        """
        Wholesale timeout of a running job.

        Moves every pending entry into timed_out, empties pending,
        stores ``items`` and finalizes with status TimedOut.
        ``payload_count`` is the number of payloads ``items`` was built
        from; a mismatch means more arrived and the call is refused.
        """

    @abstractmethod
    async def read_job(self, job_id: str) -> Optional[JobState]:
        """Consistent read of metadata, pending, records and items."""

    @abstractmethod
    def scan_job_ids(self) -> AsyncIterator[str]:
        """Iterate ids of every job whose metadata exists."""

    @abstractmethod
    async def ping(self) -> bool:
        """Whether the backing store answers."""
