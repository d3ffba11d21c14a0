"""Redis-backed job state store."""

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import structlog
from redis.commands.core import AsyncScript
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.storage.redis import RedisClient
from shared.utils.errors import StoreUnavailableError, create_error_context

from ..keys import StoreKeys
from ..models import (
    FinalizeResult,
    JobMetadata,
    JobState,
    JobStatus,
    OutcomeKind,
    ProcessedRecord,
    ReportResult,
    format_timestamp,
)
from . import scripts
from .base import JobStateStore, TimeoutMark, TimeoutMarkCode


logger = structlog.get_logger(__name__)

SERVICE_NAME = "aggregation-orchestrator"
INDEX_MAX_ENTRIES = 50
TIMEOUT_ERROR_MESSAGE = "Job timed out before the provider reported"


def _as_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _as_int(value: Any) -> int:
    if value is None or value is False:
        return 0
    return int(_as_str(value))


class RedisJobStateStore(JobStateStore):
    """
    JobStateStore on Redis.

    Multi-key mutations run as Lua scripts; snapshot reads use a
    MULTI/EXEC pipeline. Connection and timeout failures surface
    as StoreUnavailableError.
    """

    def __init__(self, redis_client: RedisClient, keys: Optional[StoreKeys] = None):
        self.redis = redis_client
        self.keys = keys or StoreKeys()
        self._scripts: Dict[str, AsyncScript] = {}

    @asynccontextmanager
    async def _guard(self, operation: str, job_id: Optional[str] = None):
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error("Job store unavailable", operation=operation, job_id=job_id, error=str(e))
            raise StoreUnavailableError(
                f"Job store unavailable during {operation}: {e}",
                operation=operation,
                context=create_error_context(SERVICE_NAME, operation, job_id=job_id),
            ) from e

    async def _script(self, name: str) -> AsyncScript:
        script = self._scripts.get(name)
        if script is None:
            script = await self.redis.register_script(getattr(scripts, name))
            self._scripts[name] = script
        return script

    async def try_get_pointer(self, reuse_key: str) -> Optional[str]:
        async with self._guard("try_get_pointer"):
            client = await self.redis.connection()
            job_id = await client.get(self.keys.pointer(reuse_key))
            if not job_id:
                return None
            job_id = _as_str(job_id)
            if not await client.exists(self.keys.meta(job_id)):
                logger.debug("Stale job pointer ignored", reuse_key=reuse_key, job_id=job_id)
                return None
            return job_id

    async def set_pointer(self, reuse_key: str, job_id: str, ttl: int) -> None:
        async with self._guard("set_pointer", job_id):
            client = await self.redis.connection()
            await client.set(self.keys.pointer(reuse_key), job_id, ex=ttl)

    async def create_job_if_absent(self, metadata: JobMetadata, combo_keys: Sequence[str], ttl: int) -> bool:
        hash_args: List[Any] = []
        for field_name, value in metadata.to_hash().items():
            hash_args.extend([field_name, value])
        keys = [self.keys.meta(metadata.job_id), self.keys.pending(metadata.job_id)]
        keys.extend(self.keys.index(account) for account in metadata.accounts)
        args = [
            ttl,
            metadata.job_id,
            metadata.created_at.timestamp(),
            INDEX_MAX_ENTRIES,
            len(hash_args),
            *hash_args,
            *combo_keys,
        ]

        async with self._guard("create_job", metadata.job_id):
            script = await self._script("CREATE_JOB")
            created = await script(keys=keys, args=args)
        return _as_int(created) == 1

    async def recent_job_ids(self, account: str, limit: int) -> List[str]:
        if limit <= 0:
            return []
        async with self._guard("recent_job_ids"):
            job_ids = await self.redis.zrevrange(self.keys.index(account), 0, limit - 1)
        return [_as_str(job_id) for job_id in job_ids]

    async def get_metadata(self, job_id: str) -> Optional[JobMetadata]:
        async with self._guard("get_metadata", job_id):
            fields = await self.redis.hgetall(self.keys.meta(job_id))
        if not fields:
            return None
        return JobMetadata.from_hash(job_id, fields)

    async def atomic_report_outcome(
        self,
        job_id: str,
        combo_key: str,
        outcome: OutcomeKind,
        record: ProcessedRecord,
        payload_json: Optional[str] = None
    ) -> Optional[ReportResult]:
        keys = [
            self.keys.meta(job_id),
            self.keys.pending(job_id),
            self.keys.results(job_id),
            self.keys.payloads(job_id),
        ]
        args = [combo_key, outcome.counter_field, record.to_json(), payload_json or ""]

        async with self._guard("report_outcome", job_id):
            script = await self._script("REPORT_OUTCOME")
            reply = await script(keys=keys, args=args)

        if not reply:
            return None

        removed, known, pending_count, succeeded, failed, timed_out, status, final_emitted = reply
        return ReportResult(
            removed=_as_int(removed) == 1,
            known=_as_int(known) == 1,
            pending_count=_as_int(pending_count),
            succeeded=_as_int(succeeded),
            failed=_as_int(failed),
            timed_out=_as_int(timed_out),
            status=JobStatus(_as_str(status)),
            final_emitted=_as_str(final_emitted) == "1",
        )

    async def get_payloads(self, job_id: str) -> Dict[str, Any]:
        async with self._guard("get_payloads", job_id):
            raw = await self.redis.hgetall(self.keys.payloads(job_id))

        payloads: Dict[str, Any] = {}
        for key, value in raw.items():
            try:
                payloads[_as_str(key)] = json.loads(value)
            except (TypeError, ValueError):
                logger.warning("Unreadable payload skipped", job_id=job_id, combo=_as_str(key))
        return payloads

    async def try_finalize(
        self,
        job_id: str,
        items: List[Any],
        completed_at: datetime
    ) -> Optional[FinalizeResult]:
        keys = [self.keys.meta(job_id), self.keys.pending(job_id), self.keys.items(job_id)]
        args = [json.dumps(items, default=str), format_timestamp(completed_at)]

        async with self._guard("finalize", job_id):
            script = await self._script("FINALIZE")
            reply = await script(keys=keys, args=args)

        if not reply or _as_int(reply[0]) != 1:
            return None

        _, status, expected, succeeded, failed, timed_out = reply
        return FinalizeResult(
            job_id=job_id,
            status=JobStatus(_as_str(status)),
            completed_at=completed_at,
            expected_total=_as_int(expected),
            succeeded=_as_int(succeeded),
            failed=_as_int(failed),
            timed_out=_as_int(timed_out),
            item_count=len(items),
        )

    async def mark_timed_out(
        self,
        job_id: str,
        items: List[Any],
        payload_count: int,
        completed_at: datetime
    ) -> TimeoutMark:
        keys = self.keys.job_keys(job_id)
        args = [
            json.dumps(items, default=str),
            payload_count,
            format_timestamp(completed_at),
            TIMEOUT_ERROR_MESSAGE,
        ]

        async with self._guard("mark_timed_out", job_id):
            script = await self._script("MARK_TIMED_OUT")
            reply = await script(keys=keys, args=args)

        code = TimeoutMarkCode(_as_str(reply[0]))
        if code != TimeoutMarkCode.MARKED:
            return TimeoutMark(code=code)

        _, expected, succeeded, failed, timed_out = reply
        return TimeoutMark(
            code=code,
            result=FinalizeResult(
                job_id=job_id,
                status=JobStatus.TIMED_OUT,
                completed_at=completed_at,
                expected_total=_as_int(expected),
                succeeded=_as_int(succeeded),
                failed=_as_int(failed),
                timed_out=_as_int(timed_out),
                item_count=len(items),
            ),
        )

    async def read_job(self, job_id: str) -> Optional[JobState]:
        async with self._guard("read_job", job_id):
            pipe = await self.redis.pipeline(transaction=True)
            pipe.hgetall(self.keys.meta(job_id))
            pipe.smembers(self.keys.pending(job_id))
            pipe.hgetall(self.keys.results(job_id))
            pipe.get(self.keys.items(job_id))
            meta_fields, pending, results, items_raw = await pipe.execute()

        if not meta_fields:
            return None

        records: Dict[str, ProcessedRecord] = {}
        for key, raw in (results or {}).items():
            try:
                records[_as_str(key)] = ProcessedRecord.from_json(raw)
            except (TypeError, ValueError):
                logger.warning("Unreadable processed record skipped", job_id=job_id, combo=_as_str(key))

        items = None
        if items_raw:
            try:
                items = json.loads(items_raw)
            except (TypeError, ValueError):
                logger.error("Unreadable items for job", job_id=job_id)
                items = []

        return JobState(
            metadata=JobMetadata.from_hash(job_id, meta_fields),
            pending=sorted(_as_str(member) for member in (pending or set())),
            records=records,
            items=items,
        )

    async def scan_job_ids(self) -> AsyncIterator[str]:
        async with self._guard("scan_job_ids"):
            async for key in self.redis.scan_iter(match=self.keys.meta_pattern()):
                yield self.keys.job_id_from_meta(_as_str(key))

    async def ping(self) -> bool:
        return await self.redis.health_check()
