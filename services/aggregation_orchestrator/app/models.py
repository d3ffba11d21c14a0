"""Data model for aggregation jobs, outcome reports and snapshots."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from shared.utils.errors import ValidationError


class JobStatus(str, Enum):
    """Job lifecycle status. Running is the only non-terminal value."""
    RUNNING = "Running"
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "CompletedWithErrors"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class OutcomeKind(str, Enum):
    """Outcome of one dispatched combo."""
    SUCCESS = "Success"
    FAILURE = "Failure"
    TIMEOUT = "Timeout"

    @property
    def counter_field(self) -> str:
        """Metadata counter incremented by a first-time report."""
        return _COUNTER_FIELDS[self]

    @property
    def record_status(self) -> str:
        """Status written to the processed record."""
        return _RECORD_STATUSES[self]

    @classmethod
    def parse(cls, value: Any) -> "OutcomeKind":
        if isinstance(value, OutcomeKind):
            return value
        kind = _OUTCOME_ALIASES.get(str(value).strip().lower()) if value is not None else None
        if kind is None:
            raise ValidationError(f"Unknown outcome: {value!r}", field="outcome", value=value)
        return kind


_COUNTER_FIELDS = {
    OutcomeKind.SUCCESS: "succeeded",
    OutcomeKind.FAILURE: "failed",
    OutcomeKind.TIMEOUT: "timed_out",
}

_RECORD_STATUSES = {
    OutcomeKind.SUCCESS: "Success",
    OutcomeKind.FAILURE: "Failed",
    OutcomeKind.TIMEOUT: "TimedOut",
}

_OUTCOME_ALIASES = {
    "success": OutcomeKind.SUCCESS,
    "failure": OutcomeKind.FAILURE,
    "failed": OutcomeKind.FAILURE,
    "timeout": OutcomeKind.TIMEOUT,
    "timedout": OutcomeKind.TIMEOUT,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def combo_key(provider: str, chain: str, account: str) -> str:
    """Pending-set entry for one unit of work."""
    return f"{provider}:{chain}:{account}"


def split_combo_key(key: str) -> Tuple[str, str, Optional[str]]:
    """Inverse of ``combo_key``; the account segment may be absent."""
    parts = key.split(":", 2)
    if len(parts) < 2:
        raise ValueError(f"Malformed combo key: {key!r}")
    provider, chain = parts[0], parts[1]
    account = parts[2] if len(parts) == 3 and parts[2] else None
    return provider, chain, account


@dataclass(frozen=True)
class Combo:
    """One (provider, chain, account) unit of dispatched work."""
    provider: str
    chain: str
    account: str

    @property
    def key(self) -> str:
        return combo_key(self.provider, self.chain, self.account)


@dataclass
class JobMetadata:
    """Per-job field map held in the shared store."""
    job_id: str
    accounts: List[str]
    chains: List[str]
    created_at: datetime
    expected_total: int
    wallet_group_id: Optional[str] = None
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    processed_count: int = 0
    status: JobStatus = JobStatus.RUNNING
    final_emitted: bool = False
    completed_at: Optional[datetime] = None

    @property
    def reported_total(self) -> int:
        return self.succeeded + self.failed + self.timed_out

    def to_hash(self) -> Dict[str, str]:
        fields = {
            "accounts": ",".join(self.accounts),
            "chains": ",".join(self.chains),
            "created_at": format_timestamp(self.created_at),
            "expected_total": str(self.expected_total),
            "succeeded": str(self.succeeded),
            "failed": str(self.failed),
            "timed_out": str(self.timed_out),
            "processed_count": str(self.processed_count),
            "status": self.status.value,
            "final_emitted": "1" if self.final_emitted else "0",
        }
        if self.wallet_group_id:
            fields["wallet_group_id"] = self.wallet_group_id
        if self.completed_at:
            fields["completed_at"] = format_timestamp(self.completed_at)
        return fields

    @classmethod
    def from_hash(cls, job_id: str, fields: Dict[str, str]) -> "JobMetadata":
        return cls(
            job_id=job_id,
            accounts=[a for a in fields.get("accounts", "").split(",") if a],
            chains=[c for c in fields.get("chains", "").split(",") if c],
            wallet_group_id=fields.get("wallet_group_id") or None,
            created_at=parse_timestamp(fields.get("created_at")) or utcnow(),
            expected_total=int(fields.get("expected_total", 0)),
            succeeded=int(fields.get("succeeded", 0)),
            failed=int(fields.get("failed", 0)),
            timed_out=int(fields.get("timed_out", 0)),
            processed_count=int(fields.get("processed_count", 0)),
            status=JobStatus(fields.get("status", JobStatus.RUNNING.value)),
            final_emitted=fields.get("final_emitted") == "1",
            completed_at=parse_timestamp(fields.get("completed_at")),
        )


@dataclass
class ProcessedRecord:
    """Latest reported outcome for one combo."""
    provider: str
    chain: str
    account: Optional[str]
    status: str
    error: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "provider": self.provider,
            "chain": self.chain,
            "account": self.account,
            "status": self.status,
        }
        if self.error:
            record["error"] = self.error
        if self.updated_at:
            record["updatedAt"] = self.updated_at
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "ProcessedRecord":
        data = json.loads(raw)
        return cls(
            provider=data.get("provider", ""),
            chain=data.get("chain", ""),
            account=data.get("account"),
            status=data.get("status", ""),
            error=data.get("error"),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class OutcomeReport:
    """An outcome delivered by a worker (or a reaper) for one combo."""
    job_id: str
    provider: str
    chain: str
    outcome: OutcomeKind
    account: Optional[str] = None
    payload: Any = None
    error: Optional[str] = None

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "OutcomeReport":
        """Build a report from a result message body (camelCase fields)."""
        if not isinstance(message, dict):
            raise ValidationError("Result message must be a JSON object")

        missing = [name for name in ("jobId", "provider", "chain", "outcome") if not message.get(name)]
        if missing:
            raise ValidationError(
                f"Result message missing fields: {', '.join(missing)}",
                field=missing[0],
            )

        return cls(
            job_id=str(message["jobId"]),
            provider=str(message["provider"]),
            chain=str(message["chain"]),
            outcome=OutcomeKind.parse(message["outcome"]),
            account=message.get("account") or None,
            payload=message.get("payload"),
            error=message.get("error"),
        )


@dataclass
class ReportResult:
    """State observed atomically right after one outcome report."""
    removed: bool
    known: bool
    pending_count: int
    succeeded: int
    failed: int
    timed_out: int
    status: JobStatus
    final_emitted: bool

    @property
    def pending_empty(self) -> bool:
        return self.pending_count == 0


@dataclass
class FinalizeResult:
    """Outcome of the exactly-once finalizing transition."""
    job_id: str
    status: JobStatus
    completed_at: datetime
    expected_total: int
    succeeded: int
    failed: int
    timed_out: int
    item_count: int = 0


@dataclass
class JobState:
    """Consistent read of everything stored for one job."""
    metadata: JobMetadata
    pending: List[str]
    records: Dict[str, ProcessedRecord]
    items: Optional[List[Any]] = None


@dataclass
class EnsureResult:
    """Result of ensuring a job exists for a request."""
    job_id: str
    reused: bool
    chains: List[str]
    expected_total: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "reused": self.reused,
            "chains": list(self.chains),
            "expectedTotal": self.expected_total,
        }


@dataclass
class JobSnapshot:
    """Point-in-time view of a job for polling clients."""
    job_id: str
    status: JobStatus
    expected: int
    succeeded: int
    failed: int
    timed_out: int
    pending: List[str]
    processed: List[Dict[str, Any]]
    is_completed: bool
    progress: float
    accounts: List[str] = field(default_factory=list)
    chains: List[str] = field(default_factory=list)
    wallet_group_id: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_count: int = 0
    summary: Dict[str, Dict[str, int]] = field(default_factory=dict)
    items: Optional[List[Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        snapshot = {
            "jobId": self.job_id,
            "status": self.status.value,
            "expected": self.expected,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "timedOut": self.timed_out,
            "pending": list(self.pending),
            "processed": list(self.processed),
            "processedCount": self.processed_count,
            "isCompleted": self.is_completed,
            "progress": self.progress,
            "accounts": list(self.accounts),
            "chains": list(self.chains),
            "walletGroupId": self.wallet_group_id,
            "createdAt": format_timestamp(self.created_at) if self.created_at else None,
            "summary": self.summary,
        }
        if self.is_completed and self.items is not None:
            snapshot["items"] = list(self.items)
        return snapshot
