"""Background sweep that times out jobs stuck in Running."""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import structlog

from shared.utils.errors import DataProcessingError

from .metrics import OrchestratorMetrics
from .models import JobStatus, utcnow
from .store.base import JobStateStore
from .tracker import CompletionTracker


logger = structlog.get_logger(__name__)


class JobTimeoutMonitor:
    """Periodically marks Running jobs older than the job timeout as TimedOut."""

    def __init__(
        self,
        store: JobStateStore,
        tracker: CompletionTracker,
        job_timeout_seconds: int,
        scan_interval_seconds: int,
        metrics: Optional[OrchestratorMetrics] = None
    ):
        self.store = store
        self.tracker = tracker
        self.job_timeout = timedelta(seconds=job_timeout_seconds)
        self.scan_interval_seconds = scan_interval_seconds
        self.metrics = metrics or OrchestratorMetrics()
        self.is_running = False
        self.task: Optional[asyncio.Task] = None
        self.last_sweep_at: Optional[datetime] = None
        self.jobs_timed_out = 0

    async def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self.task = asyncio.create_task(self._run())
        logger.info(
            "Job timeout monitor started",
            timeout_seconds=int(self.job_timeout.total_seconds()),
            interval_seconds=self.scan_interval_seconds,
        )

    async def stop(self) -> None:
        self.is_running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("Job timeout monitor stopped")

    async def _run(self) -> None:
        while self.is_running:
            try:
                await self.sweep()
                self.metrics.sweep_finished(ok=True)
            except asyncio.CancelledError:
                raise
            except DataProcessingError as e:
                self.metrics.sweep_finished(ok=False)
                logger.error("Timeout sweep failed", error=e.message, error_code=e.error_code)
            except Exception as e:
                self.metrics.sweep_finished(ok=False)
                logger.error("Timeout sweep failed", error=str(e), exc_info=True)
            await asyncio.sleep(self.scan_interval_seconds)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """One pass over live jobs; returns how many were timed out."""
        now = now or utcnow()
        timed_out = 0

        async for job_id in self.store.scan_job_ids():
            metadata = await self.store.get_metadata(job_id)
            if metadata is None or metadata.status is not JobStatus.RUNNING or metadata.final_emitted:
                continue
            if now - metadata.created_at < self.job_timeout:
                continue
            result = await self.tracker.mark_timed_out(job_id)
            if result is not None and result.status is JobStatus.TIMED_OUT:
                timed_out += 1

        self.last_sweep_at = now
        self.jobs_timed_out += timed_out
        if timed_out:
            logger.info("Timeout sweep finished", timed_out=timed_out)
        return timed_out
