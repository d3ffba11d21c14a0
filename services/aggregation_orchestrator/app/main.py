"""Main entry point for the aggregation orchestrator service."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import structlog

from shared.framework.health import HealthCheck
from shared.framework.producer import KafkaProducer, ProducerConfig
from shared.framework.service import AsyncService
from shared.storage.redis import RedisClient, RedisConfig
from shared.utils.logging import setup_logging
from shared.utils.tracing import setup_tracing

from .addresses import AddressClassifier
from .config import OrchestratorConfig
from .consumers.result_consumer import IntegrationResultConsumer
from .fanout import RequestFanout
from .keys import JobKeyResolver, StoreKeys
from .metrics import OrchestratorMetrics
from .models import EnsureResult, FinalizeResult, JobSnapshot, ReportResult
from .output.publishers import (
    CompletionPublisher,
    KafkaCompletionPublisher,
    KafkaRequestPublisher,
    RequestPublisher,
)
from .providers import ConfiguredChainSupport, ProviderCompatibilityMatrix
from .query import AggregationQueryService
from .store.base import JobStateStore
from .store.redis_store import RedisJobStateStore
from .timeout_monitor import JobTimeoutMonitor
from .tracker import CompletionTracker


logger = structlog.get_logger(__name__)


class AggregationOrchestrator:
    """
    Entry points for the API layer embedding the orchestrator.

    Wires the fan-out, completion tracker and query service over one
    job store so every operation sees the same state.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        store: JobStateStore,
        request_publisher: RequestPublisher,
        completion_publisher: Optional[CompletionPublisher] = None,
        matrix: Optional[ProviderCompatibilityMatrix] = None,
        metrics: Optional[OrchestratorMetrics] = None
    ):
        self.config = config
        self.store = store
        self.metrics = metrics or OrchestratorMetrics()
        classifier = AddressClassifier()

        self.matrix = matrix or ProviderCompatibilityMatrix(
            chain_support=ConfiguredChainSupport(
                enabled_chains=config.enabled_chains,
                disabled_pairs=config.disabled_provider_chains,
            )
        )
        self.tracker = CompletionTracker(
            store,
            completion_publisher=completion_publisher,
            classifier=classifier,
            metrics=self.metrics,
        )
        self.fanout = RequestFanout(
            config,
            store,
            self.matrix,
            request_publisher,
            self.tracker,
            classifier=classifier,
            key_resolver=JobKeyResolver(),
            metrics=self.metrics,
        )
        self.query = AggregationQueryService(
            store,
            classifier=classifier,
            recent_jobs_limit=config.recent_jobs_limit,
        )

    async def ensure(
        self,
        accounts: Sequence[str],
        chains: Optional[Sequence[str]] = None,
        wallet_group_id: Optional[str] = None
    ) -> EnsureResult:
        return await self.fanout.ensure(accounts, chains, wallet_group_id)

    async def report_outcome(
        self,
        job_id: str,
        provider: str,
        chain: str,
        outcome: Any,
        account: Optional[str] = None,
        payload: Any = None,
        error: Optional[str] = None
    ) -> Optional[ReportResult]:
        return await self.tracker.report_outcome(
            job_id, provider, chain, outcome, account=account, payload=payload, error=error
        )

    async def get_snapshot(self, job_id: str) -> JobSnapshot:
        return await self.query.get_snapshot(job_id)

    async def list_recent_jobs(self, account: str, limit: Optional[int] = None) -> List[JobSnapshot]:
        return await self.query.list_recent_jobs(account, limit)

    async def mark_timed_out(self, job_id: str) -> Optional[FinalizeResult]:
        return await self.tracker.mark_timed_out(job_id)


class OrchestratorService(AsyncService):
    """Aggregation orchestrator service."""

    def __init__(self, config: Optional[OrchestratorConfig] = None):
        config = config or OrchestratorConfig()
        super().__init__(config)
        self.config = config

        self.redis = RedisClient(
            RedisConfig(
                url=config.database.redis_url,
                max_connections=config.database.redis_max_connections,
                timeout=config.database.redis_timeout,
            )
        )
        self.store = RedisJobStateStore(self.redis, StoreKeys(config.key_prefix))
        self.orchestrator_metrics = OrchestratorMetrics(self.metrics)

        self.producer = KafkaProducer(
            ProducerConfig(topic=config.completion_topic),
            config.kafka,
        )
        self.add_producer(self.producer)

        self.orchestrator = AggregationOrchestrator(
            config,
            self.store,
            KafkaRequestPublisher(self.producer),
            completion_publisher=KafkaCompletionPublisher(self.producer),
            metrics=self.orchestrator_metrics,
        )
        self.result_consumer = IntegrationResultConsumer(config, self.orchestrator.tracker, self.metrics)
        self.add_consumer(self.result_consumer.consumer)

        self.timeout_monitor = JobTimeoutMonitor(
            self.store,
            self.orchestrator.tracker,
            job_timeout_seconds=config.job_timeout_seconds,
            scan_interval_seconds=config.timeout_scan_seconds,
            metrics=self.orchestrator_metrics,
        )

        self.health_checker.add_check(
            HealthCheck(
                name="redis",
                check_func=self.store.ping,
                timeout=3.0,
                critical=True,
                description="Job state store reachable",
            )
        )

    async def _startup_hook(self) -> None:
        setup_tracing(
            self.config.service_name,
            endpoint=self.config.observability.trace_endpoint or None,
            enabled=self.config.observability.trace_enabled,
        )

        await self.redis.connect()
        await self.producer.start()
        await self.result_consumer.start()
        if self.config.timeout_monitor_enabled:
            await self.timeout_monitor.start()

        self.logger.info(
            "Aggregation orchestrator started",
            job_ttl_seconds=self.config.job_ttl_seconds,
            job_timeout_seconds=self.config.job_timeout_seconds,
            max_accounts=self.config.max_accounts,
        )

    async def _shutdown_hook(self) -> None:
        await self.timeout_monitor.stop()
        await self.result_consumer.stop()
        await self.redis.disconnect()
        self.logger.info("Aggregation orchestrator stopped")

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status["orchestrator"] = {
            "job_ttl_seconds": self.config.job_ttl_seconds,
            "job_timeout_seconds": self.config.job_timeout_seconds,
            "timeout_monitor_running": self.timeout_monitor.is_running,
            "last_timeout_sweep": (
                self.timeout_monitor.last_sweep_at.isoformat()
                if self.timeout_monitor.last_sweep_at else None
            ),
            "jobs_timed_out": self.timeout_monitor.jobs_timed_out,
            "enabled_chains": sorted(
                chain.slug for chain in self.config.enabled_chains
            ) if self.config.enabled_chains is not None else "all",
        }
        return status


async def main():
    """Main entry point."""
    config = OrchestratorConfig()
    setup_logging(
        config.service_name,
        log_level=config.observability.log_level,
        format_type=config.observability.log_format,
    )
    service = OrchestratorService(config)
    await service.run()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
