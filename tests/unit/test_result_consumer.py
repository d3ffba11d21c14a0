"""Unit tests for the integration result consumer."""

import pytest
from prometheus_client import CollectorRegistry

from shared.framework.metrics import MetricsCollector
from shared.utils.errors import StoreUnavailableError
from services.aggregation_orchestrator.app.consumers import IntegrationResultConsumer
from services.aggregation_orchestrator.app.models import JobStatus
from tests.fixtures.sample_accounts import EVM_ACCOUNT


@pytest.fixture
def collector():
    return MetricsCollector("test-consumer", registry=CollectorRegistry())


@pytest.fixture
def result_consumer(orchestrator_config, orchestrator, collector):
    return IntegrationResultConsumer(orchestrator_config, orchestrator.tracker, collector)


def result_message(payload, offset=1):
    return {
        "topic": "integration.result.alpha",
        "partition": 0,
        "offset": offset,
        "key": "alpha",
        "payload": payload,
    }


class TestIntegrationResultConsumer:
    """Test IntegrationResultConsumer class."""

    def test_subscribes_to_result_pattern(self, result_consumer, orchestrator_config):
        """The consumer subscribes to every provider result topic."""
        assert result_consumer.consumer.config.topics == [orchestrator_config.result_topic_pattern]
        assert result_consumer.consumer.config.group_id == orchestrator_config.consumer_group

    @pytest.mark.asyncio
    async def test_messages_drive_completion(self, orchestrator, result_consumer, publisher):
        """Result messages report outcomes until the job completes."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])

        await result_consumer.handle_messages([
            result_message({
                "jobId": job.job_id,
                "provider": provider,
                "chain": "base",
                "account": EVM_ACCOUNT,
                "outcome": "Success",
                "payload": [{"provider": provider}],
            }, offset=index)
            for index, provider in enumerate(("alpha", "bravo", "charlie"))
        ])

        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.status is JobStatus.COMPLETED
        assert [item["provider"] for item in snapshot.items] == ["alpha", "bravo", "charlie"]
        assert len(publisher.completions) == 1

    @pytest.mark.asyncio
    async def test_bad_messages_do_not_stop_batch(self, orchestrator, result_consumer, collector):
        """Malformed messages are counted and skipped."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])

        await result_consumer.handle_messages([
            result_message("not json"),
            result_message({"jobId": job.job_id, "provider": "alpha"}),
            result_message({"jobId": job.job_id, "provider": "alpha", "chain": "mars", "outcome": "Success"}),
            result_message({
                "jobId": job.job_id,
                "provider": "alpha",
                "chain": "base",
                "account": EVM_ACCOUNT,
                "outcome": "Failure",
                "error": "rate limited",
            }),
        ])

        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert snapshot.failed == 1
        assert collector.registry.get_sample_value(
            "test_consumer_errors_total",
            {"error_type": "VALIDATION_ERROR", "component": "result_consumer"},
        ) == 3.0

    def test_commits_only_after_handling(self, result_consumer):
        """Results are consumed with auto-commit off."""
        assert result_consumer.consumer.config.enable_auto_commit is False

    @pytest.mark.asyncio
    async def test_store_outage_propagates(self, orchestrator, result_consumer, store, collector):
        """A store outage fails the batch instead of dropping the report."""
        job = await orchestrator.ensure([EVM_ACCOUNT], ["base"])
        store.available = False

        with pytest.raises(StoreUnavailableError):
            await result_consumer.handle_messages([
                result_message({
                    "jobId": job.job_id,
                    "provider": "alpha",
                    "chain": "base",
                    "account": EVM_ACCOUNT,
                    "outcome": "Success",
                }),
            ])

        store.available = True
        snapshot = await orchestrator.get_snapshot(job.job_id)
        assert f"alpha:base:{EVM_ACCOUNT}" in snapshot.pending
        assert collector.registry.get_sample_value(
            "test_consumer_messages_processed_total",
            {"topic": "integration.result.alpha", "status": "rejected"},
        ) is None
